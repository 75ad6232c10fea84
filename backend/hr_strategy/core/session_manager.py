import asyncio
import uuid
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .errors import FileFormatError, ProviderError
from .models import AppMode, Diagnosis, GameState, UserInputData
from .orchestrator import CancelToken, ChunkObserver, DiagnosisOrchestrator
from .spreadsheet import export_workbook, import_workbook
from .state_machine import RequestKind, RequestTicket, ScreenStateMachine
from ..config import settings

logger = logging.getLogger(__name__)

Operation = Callable[[ChunkObserver, CancelToken], Awaitable[Optional[Any]]]

class SessionManager:
    """
    Keeps one screen state machine per client session and runs the
    asynchronous request lifecycle against the orchestrator

    The start_* methods validate and enter the loading screen immediately,
    raising TransitionError or ValidationError before anything is awaited.
    They return an awaitable that finishes the request; the run_* methods
    simply await it.
    """

    def __init__(self, orchestrator: DiagnosisOrchestrator):
        self.orchestrator = orchestrator
        self.sessions: Dict[str, ScreenStateMachine] = {}
        self._background: Set[asyncio.Task] = set()

    def create_session(self) -> str:
        session_id = str(uuid.uuid4())
        self.sessions[session_id] = ScreenStateMachine()
        logger.info(f"Created session {session_id}")
        return session_id

    def get_session(self, session_id: str) -> Optional[ScreenStateMachine]:
        return self.sessions.get(session_id)

    def in_background(self, pending: Awaitable[GameState]) -> asyncio.Task:
        """Finish a started request even if the caller stops listening"""
        task = asyncio.ensure_future(pending)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run(self, machine: ScreenStateMachine, ticket: RequestTicket,
                   operation: Operation, observer: Optional[ChunkObserver]) -> GameState:
        """Drive one request from loading to its result or error screen"""
        forward = machine.observer_for(ticket)

        def observe(chunk: str) -> None:
            forward(chunk)
            if observer is not None and machine.is_current(ticket):
                observer(chunk)

        try:
            payload = await operation(observe, ticket.token)
        except asyncio.CancelledError:
            logger.warning(f"{ticket} was interrupted")
            ticket.token.cancel()
            machine.fail(ticket, ProviderError("The request was interrupted."))
            raise
        except Exception as e:
            # Request-level failures become an error screen, never a raw message
            logger.error(f"{ticket} failed: {e}", exc_info=True)
            machine.fail(ticket, e)
            return machine.state

        if payload is None:
            logger.info(f"{ticket} was cancelled")
            return machine.state

        machine.succeed(ticket, payload)
        return machine.state

    # DIAGNOSIS

    def start_diagnosis(self, machine: ScreenStateMachine, data: UserInputData,
                        observer: Optional[ChunkObserver] = None) -> Awaitable[GameState]:
        machine.update_draft(data)
        mode = machine.mode or AppMode.INDIVIDUAL
        draft = machine.draft
        message = "AI is analysing the candidate..." if mode == AppMode.RECRUITMENT else "AI is analysing..."
        ticket = machine.begin_request(RequestKind.DIAGNOSIS, message)

        async def operation(observe: ChunkObserver, token: CancelToken) -> Optional[Diagnosis]:
            report = await self.orchestrator.comprehensive_diagnosis(draft, mode, observe, token)
            if report is None:
                return None
            return Diagnosis(name=draft.name, **report.model_dump())

        return self._run(machine, ticket, operation, observer)

    async def run_diagnosis(self, machine: ScreenStateMachine, data: UserInputData,
                            observer: Optional[ChunkObserver] = None) -> GameState:
        return await self.start_diagnosis(machine, data, observer)

    # TEAM BUILDING

    def start_team_analysis(self, machine: ScreenStateMachine, purpose: str, industry: str,
                            team_size: int, department: str = "",
                            observer: Optional[ChunkObserver] = None) -> Awaitable[GameState]:
        profiles = list(machine.analysis_profiles)
        ticket = machine.begin_request(RequestKind.TEAM_BUILDING, "Building the strongest team...")

        async def operation(observe: ChunkObserver, token: CancelToken):
            return await self.orchestrator.team_building(
                profiles, purpose, industry, team_size, department, observe, token
            )

        return self._run(machine, ticket, operation, observer)

    async def run_team_analysis(self, machine: ScreenStateMachine, purpose: str, industry: str,
                                team_size: int, department: str = "",
                                observer: Optional[ChunkObserver] = None) -> GameState:
        return await self.start_team_analysis(machine, purpose, industry, team_size, department, observer)

    # HIRING RECOMMENDATION

    def start_hiring_recommendation(self, machine: ScreenStateMachine, department: str = "all",
                                    team_context: str = "",
                                    observer: Optional[ChunkObserver] = None) -> Awaitable[GameState]:
        members = list(machine.roster)
        ticket = machine.begin_request(RequestKind.HIRING, "AI is analysing the existing team...")

        async def operation(observe: ChunkObserver, token: CancelToken):
            return await self.orchestrator.hiring_recommendation(
                members, department, team_context, observe, token
            )

        return self._run(machine, ticket, operation, observer)

    async def run_hiring_recommendation(self, machine: ScreenStateMachine, department: str = "all",
                                        team_context: str = "",
                                        observer: Optional[ChunkObserver] = None) -> GameState:
        return await self.start_hiring_recommendation(machine, department, team_context, observer)

    # ROSTER FILES

    async def import_roster(self, machine: ScreenStateMachine, data: bytes) -> GameState:
        ticket = machine.begin_request(RequestKind.IMPORT, "Parsing the Excel file...")

        async def operation(observe: ChunkObserver, token: CancelToken):
            return await asyncio.to_thread(import_workbook, data)

        return await self._run(machine, ticket, operation, None)

    def export_roster(self, machine: ScreenStateMachine) -> Optional[bytes]:
        """Workbook bytes, or None after moving the machine to the error screen"""
        try:
            return export_workbook(machine.roster, settings.EXPORT_SHEET_NAME)
        except FileFormatError as e:
            machine.show_error(f"File export failed: {e.message}")
            return None
