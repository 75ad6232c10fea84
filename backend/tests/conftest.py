import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from hr_strategy.core.models import DiagnosisReport, EmployeeProfile
from hr_strategy.core.orchestrator import DiagnosisOrchestrator
from hr_strategy.core.session_manager import SessionManager
from hr_strategy.llm.provider import DiagnosisProvider, GenerationOptions

SAMPLE_REPORT: Dict[str, Any] = {
    "title": "The Quiet Strategist",
    "overall": "A calm planner who turns ambiguous goals into dependable plans.",
    "strengths": ["Structured thinking", "Reliability", "Patience"],
    "weaknesses": ["May hold back opinions", "Prefers certainty", "Slow to delegate"],
    "ideal_work_style": "Clear goals with room to plan independently.",
    "communication_style": "Concise, written and well prepared.",
    "department_recommendations": [
        {"department": "Corporate Planning", "reason": "Turns strategy into concrete plans."},
        {"department": "Quality Assurance", "reason": "Careful and consistent."},
    ],
    "manager_view": {
        "management_tips": ["Share the why early", "Agree on milestones"],
        "potential_risks": ["Quiet disagreement", "Over-planning"],
        "ideal_environment": "Stable team with clear ownership.",
        "praise_tips": ["Praise specific results", "Recognise preparation"],
        "feedback_tips": ["Give it in private", "Bring examples"],
    },
}

class FakeProvider(DiagnosisProvider):
    """
    In-memory provider returning canned chunks

    When a gate is given the stream pauses after its first chunk until the
    gate is set. An error is raised after all chunks have been yielded.
    """

    def __init__(self, chunks: Optional[List[str]] = None, error: Optional[Exception] = None,
                 delay: float = 0.0, configured: bool = True, gate: Optional[asyncio.Event] = None):
        self.chunks = list(chunks or [])
        self.error = error
        self.delay = delay
        self.gate = gate
        self._configured = configured
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    @property
    def configured(self) -> bool:
        return self._configured

    def _record(self, system_instruction: str, user_content: str, options: GenerationOptions):
        self.calls.append({
            "system_instruction": system_instruction,
            "user_content": user_content,
            "options": options,
        })

    async def generate(self, system_instruction, user_content, options):
        self._record(system_instruction, user_content, options)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return "".join(self.chunks)

    async def stream(self, system_instruction, user_content, options):
        self._record(system_instruction, user_content, options)
        try:
            for index, chunk in enumerate(self.chunks):
                if self.delay:
                    await asyncio.sleep(self.delay)
                if index == 1 and self.gate is not None:
                    await self.gate.wait()
                yield chunk
            if self.error:
                raise self.error
        finally:
            self.closed = True

def split_text(text: str, parts: int = 3) -> List[str]:
    size = max(len(text) // parts, 1)
    return [text[i:i + size] for i in range(0, len(text), size)]

@pytest.fixture
def sample_report() -> DiagnosisReport:
    return DiagnosisReport.model_validate(SAMPLE_REPORT)

@pytest.fixture
def report_chunks() -> List[str]:
    return split_text(json.dumps(SAMPLE_REPORT))

@pytest.fixture
def make_profile(sample_report):
    def factory(name: str = "Aiko Tanaka", department: str = "Sales", mbti: str = "INTJ",
                **overrides) -> EmployeeProfile:
        fields = dict(
            name=name,
            department=department,
            years_of_service=3,
            birth_date="1990-05-25",
            gender="Female",
            blood_type="A",
            zodiac="Gemini",
            eto="Horse",
            mbti=mbti,
            diagnosis=sample_report.model_copy(update={"title": f"Profile of {name}"}),
        )
        fields.update(overrides)
        return EmployeeProfile(**fields)
    return factory

@pytest.fixture
def api_client():
    """
    TestClient whose provider is replaced by a FakeProvider

    Returns a factory so each test chooses the provider behaviour.
    """
    from hr_strategy.main import app
    from hr_strategy.api.routes import get_orchestrator, get_session_manager

    def build(provider: Optional[FakeProvider] = None, timeout_seconds: float = 5.0):
        orchestrator = DiagnosisOrchestrator(provider or FakeProvider(), timeout_seconds=timeout_seconds)
        manager = SessionManager(orchestrator)
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        app.dependency_overrides[get_session_manager] = lambda: manager
        return TestClient(app)

    yield build
    app.dependency_overrides.clear()
