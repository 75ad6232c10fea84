import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..core.decoder import decode_diagnosis, decode_hiring_recommendation, decode_team_building
from ..core.errors import DecodeError, HRStrategyError, ProviderError, TransitionError, ValidationError
from ..core.models import (
    AIActionRequest, ComprehensiveDiagnosisPayload, DiagnoseMbtiPayload, HiringPayload,
    HiringRequest, MbtiQuizCompleteRequest, SelectModeRequest, TeamAnalysisRequest,
    TeamBuildingPayload, TeamSelectionRequest, UserInputData
)
from ..core.orchestrator import DiagnosisOrchestrator, ProviderRequest
from ..core.scorer import MBTI_QUESTIONS, score_mbti
from ..core.session_manager import SessionManager
from ..core.state_machine import ScreenStateMachine
from ..core.utils import with_derived_signs
from ..llm.provider import OpenAIDiagnosisProvider

logger = logging.getLogger(__name__)

# Initialize global instances
orchestrator = DiagnosisOrchestrator(
    OpenAIDiagnosisProvider(settings.OPENAI_API_KEY, settings.MODEL_NAME)
)
session_manager = SessionManager(orchestrator)

router = APIRouter()

def get_orchestrator() -> DiagnosisOrchestrator:
    return orchestrator

def get_session_manager() -> SessionManager:
    return session_manager

API_KEY_MISSING = "API key is not configured on the server."
ACTION_FAILED = "An error occurred on the server while processing the AI request."
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"

ACTIONS = (
    "diagnoseMBTI",
    "scoreMBTI",
    "getComprehensiveDiagnosis",
    "getTeamBuildingSuggestions",
    "getHiringRecommendation",
)

P = TypeVar("P", bound=BaseModel)

def _parse_payload(model: Type[P], payload: Dict[str, Any]) -> P:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise ValidationError(f"Invalid payload ({problems}).")

def _narrative_request(orchestrator: DiagnosisOrchestrator, action: str,
                       payload: Dict[str, Any]) -> Tuple[ProviderRequest, Callable[[str], BaseModel]]:
    """Provider request and matching decoder for the streamable actions"""
    if action == "getComprehensiveDiagnosis":
        parsed = _parse_payload(ComprehensiveDiagnosisPayload, payload)
        return orchestrator.diagnosis_request(with_derived_signs(parsed.data), parsed.mode), decode_diagnosis

    if action == "getTeamBuildingSuggestions":
        parsed = _parse_payload(TeamBuildingPayload, payload)
        request = orchestrator.team_building_request(
            parsed.profiles, parsed.purpose, parsed.industry, parsed.team_size, parsed.department
        )
        return request, decode_team_building

    parsed = _parse_payload(HiringPayload, payload)
    request = orchestrator.hiring_request(parsed.profiles, parsed.department, parsed.team_context)
    return request, decode_hiring_recommendation

async def _stream_text(orchestrator: DiagnosisOrchestrator, request: ProviderRequest) -> StreamingResponse:
    """
    Stream raw provider chunks as text/plain

    The first chunk is awaited before responding so that failures to start
    still produce a proper error status.
    """
    chunks = orchestrator.iter_chunks(request)
    try:
        first = await chunks.__anext__()
    except StopAsyncIteration:
        raise ProviderError("The AI service returned an empty response.")

    async def body():
        try:
            yield first
            async for chunk in chunks:
                yield chunk
        except HRStrategyError as e:
            logger.error(f"Stream '{request.kind}' aborted after it started: {e.message}")
        finally:
            await chunks.aclose()

    return StreamingResponse(body(), media_type=TEXT_MEDIA_TYPE)

# AI ACTION ENDPOINT

@router.post("/ai")
async def run_action(request: AIActionRequest,
                     orchestrator: DiagnosisOrchestrator = Depends(get_orchestrator)):
    """Single action endpoint used by the client for every AI call"""
    if request.action not in ACTIONS:
        raise HTTPException(status_code=400, detail={"message": f"Action not found: {request.action}"})

    try:
        if request.action == "scoreMBTI":
            parsed = _parse_payload(DiagnoseMbtiPayload, request.payload)
            return {"mbti": score_mbti(parsed.questions or MBTI_QUESTIONS, parsed.answers)}

        if not orchestrator.configured:
            logger.error(f"Rejected action {request.action}: provider credential missing")
            raise HTTPException(status_code=500, detail={"message": API_KEY_MISSING})

        if request.action == "diagnoseMBTI":
            parsed = _parse_payload(DiagnoseMbtiPayload, request.payload)
            mbti_type = await orchestrator.classify_mbti(parsed.questions or MBTI_QUESTIONS, parsed.answers)
            return {"mbti": mbti_type}

        provider_request, decode = _narrative_request(orchestrator, request.action, request.payload)
        if request.stream:
            return await _stream_text(orchestrator, provider_request)

        text = await orchestrator.collect(provider_request)
        try:
            return decode(text).model_dump()
        except ValidationError as e:
            # A malformed provider response is a server-side failure
            raise DecodeError(text, e.message) from e

    except HTTPException:
        raise
    except ValidationError as e:
        logger.warning(f"Action {request.action} rejected: {e.message}")
        raise HTTPException(status_code=400, detail={"message": e.message})
    except (ProviderError, DecodeError) as e:
        logger.error(f"Action {request.action} failed: {e.message}")
        raise HTTPException(status_code=500, detail={"message": ACTION_FAILED, "error": e.message})

# SESSION ENDPOINTS

def _machine(session_id: str, manager: SessionManager) -> ScreenStateMachine:
    machine = manager.get_session(session_id)
    if machine is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return machine

def _snapshot(session_id: str, machine: ScreenStateMachine) -> Dict[str, Any]:
    return {"session_id": session_id, **machine.snapshot()}

@contextmanager
def _state_errors():
    """Map rejected screen events to HTTP errors"""
    try:
        yield
    except TransitionError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

@router.post("/sessions")
async def create_session(manager: SessionManager = Depends(get_session_manager)):
    """Start a new session on the mode selection screen"""
    session_id = manager.create_session()
    return _snapshot(session_id, manager.get_session(session_id))

@router.get("/sessions/{session_id}")
async def get_session(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    return _snapshot(session_id, _machine(session_id, manager))

@router.post("/sessions/{session_id}/mode")
async def select_mode(session_id: str, request: SelectModeRequest,
                      manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.select_mode(request.mode)
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/hiring-setup")
async def open_hiring_setup(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.open_hiring_setup()
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/mbti-quiz/start")
async def start_mbti_quiz(session_id: str, draft: Optional[UserInputData] = None,
                          manager: SessionManager = Depends(get_session_manager)):
    """Open the questionnaire, keeping whatever the form holds so far"""
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.start_mbti_quiz(draft)
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/mbti-quiz/complete")
async def complete_mbti_quiz(session_id: str, request: MbtiQuizCompleteRequest,
                             manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.complete_mbti_quiz(request.answers)
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/diagnosis")
async def run_diagnosis(session_id: str, data: UserInputData,
                        stream: bool = Query(False, description="Stream provider text while analysing"),
                        manager: SessionManager = Depends(get_session_manager)):
    """
    Submit the input form and run the comprehensive diagnosis

    With stream=true the response body is the raw provider text; the
    decoded result is read afterwards from the session snapshot. The
    request keeps running if the client disconnects.
    """
    machine = _machine(session_id, manager)

    if not stream:
        with _state_errors():
            pending = manager.start_diagnosis(machine, data)
        await pending
        return _snapshot(session_id, machine)

    queue: asyncio.Queue = asyncio.Queue()
    with _state_errors():
        pending = manager.start_diagnosis(machine, data, queue.put_nowait)
    task = manager.in_background(pending)
    task.add_done_callback(lambda _: queue.put_nowait(None))

    async def body():
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield chunk

    return StreamingResponse(body(), media_type=TEXT_MEDIA_TYPE)

@router.post("/sessions/{session_id}/roster")
async def add_to_roster(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    """Add the latest diagnosis to the roster"""
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.add_latest_to_roster()
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/team/selection")
async def select_team_members(session_id: str, request: TeamSelectionRequest,
                              manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.select_team_members(request.profile_ids)
    return _snapshot(session_id, machine)

@router.delete("/sessions/{session_id}/team/profiles/{profile_id}")
async def remove_analysis_profile(session_id: str, profile_id: str,
                                  manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.remove_analysis_profile(profile_id)
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/team/analysis")
async def run_team_analysis(session_id: str, request: TeamAnalysisRequest,
                            manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        pending = manager.start_team_analysis(
            machine, request.purpose, request.industry, request.team_size, request.department
        )
    await pending
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/hiring")
async def run_hiring_recommendation(session_id: str, request: HiringRequest,
                                    manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        pending = manager.start_hiring_recommendation(machine, request.department, request.team_context)
    await pending
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/roster/import")
async def import_roster(session_id: str, file: UploadFile = File(...),
                        manager: SessionManager = Depends(get_session_manager)):
    """Replace the roster with the contents of an uploaded .xlsx file"""
    machine = _machine(session_id, manager)
    data = await file.read()
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Uploaded file is too large")

    logger.info(f"Importing roster from {file.filename} ({len(data)} bytes)")
    with _state_errors():
        await manager.import_roster(machine, data)
    return _snapshot(session_id, machine)

@router.get("/sessions/{session_id}/roster/export")
async def export_roster(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        content = manager.export_roster(machine)
    if content is None:
        raise HTTPException(status_code=500, detail=machine.error)

    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{settings.EXPORT_FILE_NAME}"'},
    )

@router.post("/sessions/{session_id}/profiles/{profile_id}/view")
async def view_profile(session_id: str, profile_id: str,
                       manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.view_profile(profile_id)
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/back")
async def back_to_data_management(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.back_to_data_management()
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/restart")
async def restart(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    machine = _machine(session_id, manager)
    with _state_errors():
        machine.restart()
    return _snapshot(session_id, machine)

@router.post("/sessions/{session_id}/reset")
async def reset(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    """Back to mode selection; an in-flight request is cancelled"""
    machine = _machine(session_id, manager)
    machine.reset()
    return _snapshot(session_id, machine)

# REFERENCE DATA

@router.get("/mbti/questions")
async def list_mbti_questions():
    return {"questions": [q.model_dump() for q in MBTI_QUESTIONS], "total": len(MBTI_QUESTIONS)}

@router.get("/health")
async def health_check(orchestrator: DiagnosisOrchestrator = Depends(get_orchestrator),
                       manager: SessionManager = Depends(get_session_manager)):
    """Service health and provider configuration"""
    return {
        "status": "healthy" if orchestrator.configured else "degraded",
        "timestamp": datetime.now().isoformat(),
        "service": "AI HR Strategy Diagnosis",
        "version": "1.0.0",
        "components": {
            "provider_configured": orchestrator.configured,
            "model": settings.MODEL_NAME,
            "active_sessions": len(manager.sessions),
            "mbti_questions": len(MBTI_QUESTIONS),
        },
        "configuration": {
            "timeout_seconds": orchestrator.timeout_seconds,
            "response_language": orchestrator.language,
        },
    }
