import asyncio

import pytest

from hr_strategy.core.errors import (
    DecodeError, ProviderError, ProviderNotConfiguredError, ValidationError
)
from hr_strategy.core.models import AppMode, Diagnosis, UserInputData
from hr_strategy.core.orchestrator import CancelToken, DiagnosisOrchestrator
from hr_strategy.core.scorer import MBTI_QUESTIONS
from hr_strategy.llm.provider import OpenAIDiagnosisProvider

from conftest import FakeProvider

CHUNKS = ['{"a":1,', '"b":2}']

def _orchestrator(provider, timeout_seconds=5.0):
    return DiagnosisOrchestrator(provider, timeout_seconds=timeout_seconds, language="English")

def _request(orchestrator):
    return orchestrator.diagnosis_request(UserInputData(name="Aiko"), AppMode.INDIVIDUAL)

# STREAM AGGREGATION

def test_chunks_are_concatenated_and_observed_in_order():
    orchestrator = _orchestrator(FakeProvider(CHUNKS))
    observed = []

    text = asyncio.run(orchestrator.collect(_request(orchestrator), observed.append))

    assert text == '{"a":1,"b":2}'
    assert observed == CHUNKS

def test_cancelled_request_discards_partial_text():
    provider = FakeProvider(["one", "two", "three"])
    orchestrator = _orchestrator(provider)
    token = CancelToken()
    observed = []

    def observe(chunk):
        observed.append(chunk)
        token.cancel()

    text = asyncio.run(orchestrator.collect(_request(orchestrator), observe, token))

    assert text is None
    assert observed == ["one"]
    assert provider.closed

def test_timeout_becomes_provider_error():
    orchestrator = _orchestrator(FakeProvider(CHUNKS, delay=1.0), timeout_seconds=0.05)

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(orchestrator.collect(_request(orchestrator)))
    assert "did not respond in time" in exc_info.value.message

def test_provider_exception_is_normalized():
    orchestrator = _orchestrator(FakeProvider([], error=ConnectionError("connection reset")))

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(orchestrator.collect(_request(orchestrator)))
    assert "connection reset" not in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, ConnectionError)

def test_empty_stream_is_an_error():
    orchestrator = _orchestrator(FakeProvider([]))
    with pytest.raises(ProviderError):
        asyncio.run(orchestrator.collect(_request(orchestrator)))

def test_empty_completion_is_an_error():
    orchestrator = _orchestrator(FakeProvider(["   "]))
    with pytest.raises(ProviderError):
        asyncio.run(orchestrator.complete(_request(orchestrator)))

def test_unconfigured_openai_provider_is_rejected():
    orchestrator = _orchestrator(OpenAIDiagnosisProvider(None))

    assert not orchestrator.configured
    with pytest.raises(ProviderNotConfiguredError):
        asyncio.run(orchestrator.complete(_request(orchestrator)))

# REQUEST BUILDING

def test_diagnosis_request_targets_candidate_in_recruitment():
    orchestrator = _orchestrator(FakeProvider())
    data = UserInputData(name="Aiko", gender="Female", blood_type="O", mbti="", industry="Restaurant")

    request = orchestrator.diagnosis_request(data, AppMode.RECRUITMENT)

    assert "candidate" in request.system_instruction
    assert "English" in request.system_instruction
    assert "- MBTI: Unknown" in request.user_content
    assert "- Industry: Restaurant" in request.user_content
    assert request.options.json_response
    assert request.options.temperature == orchestrator.narrative_temperature

def test_optional_context_is_only_sent_when_present():
    orchestrator = _orchestrator(FakeProvider())
    data = UserInputData(name="Aiko", team_context="Small product team", strengths_context="  ")

    content = orchestrator.diagnosis_request(data, AppMode.INDIVIDUAL).user_content

    assert "Small product team" in content
    assert "absorbed in" not in content

def test_diagnosis_is_not_available_in_data_management():
    with pytest.raises(ValidationError):
        _orchestrator(FakeProvider()).diagnosis_request(UserInputData(), AppMode.DATA_MANAGEMENT)

def test_team_analysis_needs_enough_members(sample_report):
    profiles = [Diagnosis(name="Aiko", **sample_report.model_dump())]
    with pytest.raises(ValidationError) as exc_info:
        _orchestrator(FakeProvider()).team_building_request(profiles, "Launch", "Retail", 3)
    assert "at least 3" in exc_info.value.message

def test_hiring_request_is_scoped_to_department(make_profile):
    members = [make_profile("Aiko", "Sales"), make_profile("Ben", "Engineering")]
    orchestrator = _orchestrator(FakeProvider())

    content = orchestrator.hiring_request(members, "Sales", "Growing fast").user_content

    assert "Aiko" in content
    assert "Ben" not in content
    assert "Growing fast" in content
    with pytest.raises(ValidationError):
        orchestrator.hiring_request(members, "Legal")

# HIGH-LEVEL OPERATIONS

def test_comprehensive_diagnosis_decodes_fenced_stream(report_chunks, sample_report):
    chunks = ["```json\n"] + report_chunks + ["\n```"]
    orchestrator = _orchestrator(FakeProvider(chunks))
    observed = []

    report = asyncio.run(orchestrator.comprehensive_diagnosis(
        UserInputData(name="Aiko"), AppMode.INDIVIDUAL, observed.append
    ))

    assert report == sample_report
    assert "".join(observed) == "".join(chunks)

def test_comprehensive_diagnosis_garbage_is_decode_error():
    orchestrator = _orchestrator(FakeProvider(["I am sorry, I cannot help with that."]))
    with pytest.raises(DecodeError):
        asyncio.run(orchestrator.comprehensive_diagnosis(UserInputData(), AppMode.INDIVIDUAL))

def test_classify_mbti_uses_low_temperature():
    provider = FakeProvider([" enfp\n"])
    orchestrator = _orchestrator(provider)

    assert asyncio.run(orchestrator.classify_mbti(MBTI_QUESTIONS, {"1": "E"})) == "ENFP"
    options = provider.calls[0]["options"]
    assert options.temperature == orchestrator.classification_temperature
    assert not options.json_response

def test_classify_mbti_rejects_free_text():
    orchestrator = _orchestrator(FakeProvider(["Probably an introvert"]))
    with pytest.raises(DecodeError):
        asyncio.run(orchestrator.classify_mbti(MBTI_QUESTIONS, {}))
