import asyncio
import logging
import re
from typing import AsyncIterator, Callable, List, Mapping, Optional, Any

from pydantic import BaseModel

from .errors import DecodeError, HRStrategyError, ProviderError, ValidationError
from .models import (
    AppMode, Diagnosis, DiagnosisReport, EmployeeProfile, HiringRecommendation,
    MbtiQuestion, TeamBuildingResult, UserInputData, MBTI_PATTERN
)
from .decoder import decode_diagnosis, decode_hiring_recommendation, decode_team_building
from ..config import settings
from ..llm.provider import DiagnosisProvider, GenerationOptions
from ..llm import prompts

logger = logging.getLogger(__name__)

ChunkObserver = Callable[[str], None]

DIAGNOSIS_MODES = (AppMode.INDIVIDUAL, AppMode.RECRUITMENT, AppMode.TEAM_BUILDING)

class CancelToken:
    """Set once the screen that started a request no longer wants its output"""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

class ProviderRequest(BaseModel):
    """Everything needed for one provider call"""
    kind: str
    system_instruction: str
    user_content: str
    options: GenerationOptions

class DiagnosisOrchestrator:
    """
    Builds provider requests, aggregates streamed output and decodes it

    Every provider failure is normalized to a ProviderError with a message
    that can be shown to users; the underlying cause is only logged.
    """

    def __init__(self,
                 provider: DiagnosisProvider,
                 timeout_seconds: float = settings.PROVIDER_TIMEOUT_SECONDS,
                 language: str = settings.RESPONSE_LANGUAGE,
                 classification_temperature: float = settings.CLASSIFICATION_TEMPERATURE,
                 narrative_temperature: float = settings.NARRATIVE_TEMPERATURE):
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.language = language
        self.classification_temperature = classification_temperature
        self.narrative_temperature = narrative_temperature

    @property
    def configured(self) -> bool:
        return self.provider.configured

    # REQUEST BUILDERS

    def _narrative_options(self) -> GenerationOptions:
        return GenerationOptions(temperature=self.narrative_temperature, json_response=True)

    def diagnosis_request(self, data: UserInputData, mode: AppMode) -> ProviderRequest:
        if mode not in DIAGNOSIS_MODES:
            raise ValidationError(f"Diagnosis is not available in {mode.value} mode.")
        return ProviderRequest(
            kind="diagnosis",
            system_instruction=prompts.get_diagnosis_prompt(mode, self.language),
            user_content=prompts.format_user_data(data),
            options=self._narrative_options(),
        )

    def mbti_request(self, questions: List[MbtiQuestion], answers: Mapping[Any, Any]) -> ProviderRequest:
        return ProviderRequest(
            kind="mbti_classification",
            system_instruction=prompts.MBTI_CLASSIFICATION_PROMPT,
            user_content=prompts.format_mbti_answers(questions, answers),
            options=GenerationOptions(temperature=self.classification_temperature),
        )

    def team_building_request(self, profiles: List[Diagnosis], purpose: str, industry: str,
                              team_size: int, department: str = "") -> ProviderRequest:
        if len(profiles) < team_size:
            raise ValidationError(
                f"Team analysis needs at least {team_size} members, "
                f"but only {len(profiles)} are selected."
            )
        return ProviderRequest(
            kind="team_building",
            system_instruction=prompts.TEAM_BUILDING_PROMPT.format(language=self.language),
            user_content=prompts.format_team_profiles(profiles, purpose, industry, team_size, department),
            options=self._narrative_options(),
        )

    def hiring_request(self, members: List[EmployeeProfile], department: str = "all",
                       team_context: str = "") -> ProviderRequest:
        if not prompts.scope_members(members, department):
            raise ValidationError("Team analysis needs at least one member.")
        return ProviderRequest(
            kind="hiring_recommendation",
            system_instruction=prompts.HIRING_RECOMMENDATION_PROMPT.format(language=self.language),
            user_content=prompts.format_existing_team(members, department, team_context),
            options=self._narrative_options(),
        )

    # PROVIDER CALLS

    def _provider_failure(self, request: ProviderRequest, error: Exception) -> ProviderError:
        if isinstance(error, asyncio.TimeoutError):
            logger.error(f"Provider call '{request.kind}' timed out after {self.timeout_seconds}s")
            return ProviderError("The AI service did not respond in time. Please try again.")
        logger.error(f"Provider call '{request.kind}' failed: {error}", exc_info=error)
        return ProviderError()

    async def complete(self, request: ProviderRequest) -> str:
        """Single-shot call returning the full response text"""
        try:
            text = await asyncio.wait_for(
                self.provider.generate(request.system_instruction, request.user_content, request.options),
                timeout=self.timeout_seconds,
            )
        except HRStrategyError:
            raise
        except Exception as e:
            raise self._provider_failure(request, e) from e

        if not text or not text.strip():
            logger.error(f"Provider call '{request.kind}' returned an empty body")
            raise ProviderError("The AI service returned an empty response.")
        return text

    async def iter_chunks(self, request: ProviderRequest) -> AsyncIterator[str]:
        """
        Yield provider chunks in arrival order within the timeout budget

        Raises:
            ProviderError: on provider failure, timeout, or an empty stream
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        chunks = self.provider.stream(request.system_instruction, request.user_content, request.options)
        received = False

        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(
                        chunks.__anext__(), timeout=max(deadline - loop.time(), 0)
                    )
                except StopAsyncIteration:
                    break
                except HRStrategyError:
                    raise
                except Exception as e:
                    raise self._provider_failure(request, e) from e

                if chunk:
                    received = True
                    yield chunk
        finally:
            close = getattr(chunks, "aclose", None)
            if close is not None:
                await close()

        if not received:
            logger.error(f"Provider stream '{request.kind}' returned an empty body")
            raise ProviderError("The AI service returned an empty response.")

    async def collect(self, request: ProviderRequest,
                      observer: Optional[ChunkObserver] = None,
                      token: Optional[CancelToken] = None) -> Optional[str]:
        """
        Concatenate a streamed response, forwarding each chunk to the observer

        Returns None when the token is cancelled; partial text is discarded.
        """
        parts: List[str] = []
        chunks = self.iter_chunks(request)
        try:
            async for chunk in chunks:
                if token is not None and token.cancelled:
                    break
                parts.append(chunk)
                if observer is not None:
                    observer(chunk)
        finally:
            await chunks.aclose()

        if token is not None and token.cancelled:
            logger.info(f"Discarded {len(parts)} chunks of cancelled '{request.kind}' request")
            return None
        return "".join(parts)

    # HIGH-LEVEL OPERATIONS

    async def comprehensive_diagnosis(self, data: UserInputData, mode: AppMode,
                                      observer: Optional[ChunkObserver] = None,
                                      token: Optional[CancelToken] = None) -> Optional[DiagnosisReport]:
        text = await self.collect(self.diagnosis_request(data, mode), observer, token)
        return None if text is None else decode_diagnosis(text)

    async def team_building(self, profiles: List[Diagnosis], purpose: str, industry: str,
                            team_size: int, department: str = "",
                            observer: Optional[ChunkObserver] = None,
                            token: Optional[CancelToken] = None) -> Optional[TeamBuildingResult]:
        request = self.team_building_request(profiles, purpose, industry, team_size, department)
        text = await self.collect(request, observer, token)
        return None if text is None else decode_team_building(text)

    async def hiring_recommendation(self, members: List[EmployeeProfile], department: str = "all",
                                    team_context: str = "",
                                    observer: Optional[ChunkObserver] = None,
                                    token: Optional[CancelToken] = None) -> Optional[HiringRecommendation]:
        text = await self.collect(self.hiring_request(members, department, team_context), observer, token)
        return None if text is None else decode_hiring_recommendation(text)

    async def classify_mbti(self, questions: List[MbtiQuestion], answers: Mapping[Any, Any]) -> str:
        """Provider-backed alternative to the local scorer"""
        text = await self.complete(self.mbti_request(questions, answers))
        mbti_type = text.strip().upper()
        if not re.match(MBTI_PATTERN, mbti_type):
            logger.error(f"Invalid MBTI type received from AI: {mbti_type!r}")
            raise DecodeError(text, "Could not determine a valid MBTI type.")
        return mbti_type
