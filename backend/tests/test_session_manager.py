import asyncio

import pytest

from hr_strategy.core.errors import TransitionError
from hr_strategy.core.models import AppMode, GameState, UserInputData
from hr_strategy.core.orchestrator import DiagnosisOrchestrator
from hr_strategy.core.session_manager import SessionManager
from hr_strategy.core.spreadsheet import export_workbook
from hr_strategy.core.state_machine import ScreenStateMachine

from conftest import FakeProvider

def _manager(provider):
    return SessionManager(DiagnosisOrchestrator(provider, timeout_seconds=5.0))

def _input_machine(manager, mode=AppMode.INDIVIDUAL):
    machine = manager.get_session(manager.create_session())
    machine.select_mode(mode)
    return machine

def test_sessions_are_independent():
    manager = _manager(FakeProvider())
    first = manager.get_session(manager.create_session())
    second = manager.get_session(manager.create_session())

    first.select_mode(AppMode.INDIVIDUAL)

    assert second.state == GameState.MODE_SELECTION
    assert manager.get_session("missing") is None

def test_diagnosis_success(report_chunks, sample_report):
    manager = _manager(FakeProvider(report_chunks))
    machine = _input_machine(manager)
    observed = []

    state = asyncio.run(manager.run_diagnosis(machine, UserInputData(name="Aiko", mbti="intj"), observed.append))

    assert state == GameState.RESULTS
    assert machine.latest_result.name == "Aiko"
    assert machine.latest_result.report() == sample_report
    assert machine.streaming_text == "".join(report_chunks)
    assert observed == report_chunks
    assert machine.draft.mbti == "INTJ"

def test_diagnosis_failure_shows_prefixed_error():
    manager = _manager(FakeProvider(["not json"]))
    machine = _input_machine(manager)

    state = asyncio.run(manager.run_diagnosis(machine, UserInputData(name="Aiko")))

    assert state == GameState.ERROR
    assert machine.error.startswith("Analysis failed: ")

def test_diagnosis_outside_input_is_rejected_before_loading():
    manager = _manager(FakeProvider())
    machine = manager.get_session(manager.create_session())

    with pytest.raises(TransitionError):
        manager.start_diagnosis(machine, UserInputData(name="Aiko"))
    assert machine.state == GameState.MODE_SELECTION

def test_reset_during_request_discards_the_result(report_chunks):
    async def scenario():
        gate = asyncio.Event()
        provider = FakeProvider(report_chunks, gate=gate)
        manager = _manager(provider)
        machine = _input_machine(manager)

        task = asyncio.ensure_future(manager.run_diagnosis(machine, UserInputData(name="Aiko")))
        while not machine.streaming_text:
            await asyncio.sleep(0.01)

        machine.reset()
        gate.set()
        await asyncio.wait_for(task, timeout=5)
        return machine, provider

    machine, provider = asyncio.run(scenario())

    assert machine.state == GameState.MODE_SELECTION
    assert machine.latest_result is None
    assert machine.error is None
    assert provider.closed

def test_interrupted_request_moves_to_error_screen(report_chunks):
    async def scenario():
        manager = _manager(FakeProvider(report_chunks, delay=1.0))
        machine = _input_machine(manager)

        task = asyncio.ensure_future(manager.run_diagnosis(machine, UserInputData(name="Aiko")))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return machine

    machine = asyncio.run(scenario())

    assert machine.state == GameState.ERROR
    assert machine.error == "Analysis failed: The request was interrupted."
    assert machine.active_ticket is None
    assert machine.reset() == GameState.MODE_SELECTION

def test_team_analysis_with_too_few_members_shows_error(make_profile):
    roster = [make_profile("A"), make_profile("B")]
    manager = _manager(FakeProvider())
    machine = ScreenStateMachine(roster)
    manager.sessions["team"] = machine
    machine.select_mode(AppMode.TEAM_BUILDING)
    machine.select_team_members([p.id for p in roster])

    state = asyncio.run(manager.run_team_analysis(machine, "New product launch", "Retail", 3))

    assert state == GameState.ERROR
    assert machine.error.startswith("Team analysis failed: Team analysis needs at least 3 members")

def test_hiring_recommendation_success(make_profile):
    text = '{"team_analysis_summary": "Planner heavy.", "ideal_candidate_profile": {"title": "Connector"}}'
    manager = _manager(FakeProvider([text]))
    machine = manager.get_session(manager.create_session())
    machine.roster = [make_profile()]
    machine.open_hiring_setup()

    state = asyncio.run(manager.run_hiring_recommendation(machine, "Sales", "Expanding to Osaka"))

    assert state == GameState.HIRING_RECOMMENDATION_RESULTS
    assert machine.hiring_result.ideal_candidate_profile.title == "Connector"

def test_import_and_export_roster(make_profile):
    manager = _manager(FakeProvider())
    machine = _input_machine(manager, AppMode.DATA_MANAGEMENT)
    profiles = [make_profile("A"), make_profile("B")]

    state = asyncio.run(manager.import_roster(machine, export_workbook(profiles)))

    assert state == GameState.DATA_MANAGEMENT
    assert [p.id for p in machine.roster] == [p.id for p in profiles]
    assert manager.export_roster(machine)[:2] == b"PK"

def test_bad_import_shows_error_and_keeps_roster(make_profile):
    manager = _manager(FakeProvider())
    machine = _input_machine(manager, AppMode.DATA_MANAGEMENT)
    machine.roster = [make_profile()]

    state = asyncio.run(manager.import_roster(machine, b"not a workbook"))

    assert state == GameState.ERROR
    assert machine.error.startswith("File import failed: ")
    assert len(machine.roster) == 1
