from typing import Dict, List, Optional, Any, Union
from enum import Enum
from pydantic import BaseModel, Field, field_validator
import uuid

MBTI_PATTERN = r"^[EI][SN][TF][JP]$"

class AppMode(str, Enum):
    """Product modes selectable from the top screen"""
    INDIVIDUAL = "individual"
    RECRUITMENT = "recruitment"
    TEAM_BUILDING = "team_building"
    DATA_MANAGEMENT = "data_management"

class GameState(str, Enum):
    """Screens of the application; exactly one is active per session"""
    MODE_SELECTION = "mode_selection"
    INPUT = "input"
    MBTI_QUIZ = "mbti_quiz"
    LOADING = "loading"
    RESULTS = "results"
    TEAM_BUILDING_SELECTION = "team_building_selection"
    TEAM_BUILDING_ANALYSIS = "team_building_analysis"
    TEAM_BUILDING_RESULTS = "team_building_results"
    HIRING_RECOMMENDATION_SETUP = "hiring_recommendation_setup"
    HIRING_RECOMMENDATION_RESULTS = "hiring_recommendation_results"
    DATA_MANAGEMENT = "data_management"
    ERROR = "error"

class MbtiCategory(str, Enum):
    EI = "EI"
    SN = "SN"
    TF = "TF"
    JP = "JP"

class MbtiPole(BaseModel):
    id: str
    text: str

class MbtiQuestion(BaseModel):
    """Questionnaire item contrasting pole A (E/S/T/J) with pole B (I/N/F/P)"""
    id: int
    category: MbtiCategory
    pole_a: MbtiPole
    pole_b: MbtiPole

class UserInputData(BaseModel):
    """Draft attributes entered on the input screen"""
    name: str = ""
    birth_date: str = ""
    gender: str = "Prefer not to say"
    blood_type: str = ""
    zodiac: str = ""
    eto: str = ""
    mbti: str = ""
    industry: Optional[str] = None
    department: Optional[str] = None
    years_of_service: Optional[int] = Field(default=None, ge=0)
    company_context: Optional[str] = None
    team_context: Optional[str] = None
    strengths_context: Optional[str] = None
    challenges_context: Optional[str] = None

    @field_validator("mbti")
    @classmethod
    def normalize_mbti(cls, value: str) -> str:
        return value.strip().upper()

class DepartmentRecommendation(BaseModel):
    department: str
    reason: str

class ManagerView(BaseModel):
    """Advice aimed at the person's manager"""
    management_tips: List[str] = []
    potential_risks: List[str] = []
    ideal_environment: str = ""
    praise_tips: List[str] = []
    feedback_tips: List[str] = []

class DiagnosisReport(BaseModel):
    """Narrative analysis as returned by the diagnosis provider"""
    title: str
    overall: str
    strengths: List[str] = []
    weaknesses: List[str] = []
    ideal_work_style: str = ""
    communication_style: str = ""
    department_recommendations: List[DepartmentRecommendation] = []
    manager_view: Optional[ManagerView] = None

class Diagnosis(DiagnosisReport):
    """Report bound to the person it was generated for"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str

    model_config = {"frozen": True}

    def report(self) -> DiagnosisReport:
        return DiagnosisReport(**self.model_dump(exclude={"id", "name"}))

class EmployeeProfile(BaseModel):
    """Roster entry"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    department: str = ""
    years_of_service: int = 0
    birth_date: str = ""
    gender: str = ""
    blood_type: str = ""
    zodiac: str = ""
    eto: str = ""
    mbti: str = Field(..., pattern=MBTI_PATTERN)
    diagnosis: DiagnosisReport

    def as_diagnosis(self) -> Diagnosis:
        return Diagnosis(id=self.id, name=self.name, **self.diagnosis.model_dump())

class SuggestedTeam(BaseModel):
    team_title: str
    members: List[str]
    reason: str = ""
    synergy: str = ""
    team_strengths: List[str] = []
    team_weaknesses: List[str] = []

class TeamBuildingResult(BaseModel):
    overall_summary: str
    suggested_teams: List[SuggestedTeam] = []

class IdealCandidateProfile(BaseModel):
    title: str
    mbti_suggestion: str = ""
    key_strengths: List[str] = []
    reasoning: str = ""

class HiringRecommendation(BaseModel):
    team_analysis_summary: str
    ideal_candidate_profile: IdealCandidateProfile

# API Request/Response Models

class AIActionRequest(BaseModel):
    """Request to the single action endpoint"""
    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    stream: bool = False

class SelectModeRequest(BaseModel):
    mode: AppMode

class MbtiQuizCompleteRequest(BaseModel):
    """Answers keyed by question id: signed intensity (-3..3) or pole letter"""
    answers: Dict[str, Union[int, str]]

class TeamSelectionRequest(BaseModel):
    profile_ids: List[str] = Field(..., min_length=1)

class TeamAnalysisRequest(BaseModel):
    purpose: str = Field(..., min_length=1)
    industry: str = Field(..., min_length=1)
    team_size: int = Field(..., ge=1)
    department: str = ""

class HiringRequest(BaseModel):
    department: str = "all"
    team_context: str = ""

# Action payloads accepted by POST /ai

class DiagnoseMbtiPayload(BaseModel):
    questions: Optional[List[MbtiQuestion]] = None
    answers: Dict[str, Union[int, str]]

class ComprehensiveDiagnosisPayload(BaseModel):
    data: UserInputData
    mode: AppMode = AppMode.INDIVIDUAL

class TeamBuildingPayload(BaseModel):
    model_config = {"populate_by_name": True}

    profiles: List[Diagnosis]
    purpose: str = Field(..., min_length=1)
    industry: str = Field(..., min_length=1)
    team_size: int = Field(..., ge=1, alias="teamSize")
    department: str = ""

class HiringPayload(BaseModel):
    model_config = {"populate_by_name": True}

    profiles: List[EmployeeProfile]
    department: str = "all"
    team_context: str = Field("", alias="teamContext")
