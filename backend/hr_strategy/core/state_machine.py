import logging
import itertools
import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel

from .errors import HRStrategyError, TransitionError, ValidationError
from .models import (
    AppMode, Diagnosis, EmployeeProfile, GameState, HiringRecommendation,
    MbtiQuestion, TeamBuildingResult, UserInputData, MBTI_PATTERN
)
from .orchestrator import CancelToken, ChunkObserver
from .scorer import MBTI_QUESTIONS, score_mbti
from .utils import with_derived_signs

logger = logging.getLogger(__name__)

class RequestKind(str, Enum):
    """Asynchronous operations routed through the loading screen"""
    DIAGNOSIS = "diagnosis"
    TEAM_BUILDING = "team_building"
    HIRING = "hiring"
    IMPORT = "import"

# Screen entered on success and the prefix used for failure messages
_REQUEST_OUTCOMES = {
    RequestKind.DIAGNOSIS: (GameState.RESULTS, "Analysis failed"),
    RequestKind.TEAM_BUILDING: (GameState.TEAM_BUILDING_RESULTS, "Team analysis failed"),
    RequestKind.HIRING: (GameState.HIRING_RECOMMENDATION_RESULTS, "Hiring recommendation failed"),
    RequestKind.IMPORT: (GameState.DATA_MANAGEMENT, "File import failed"),
}

# Screens from which each request may be started
_REQUEST_ORIGINS = {
    RequestKind.DIAGNOSIS: {GameState.INPUT},
    RequestKind.TEAM_BUILDING: {GameState.TEAM_BUILDING_ANALYSIS},
    RequestKind.HIRING: {GameState.HIRING_RECOMMENDATION_SETUP},
    RequestKind.IMPORT: {GameState.DATA_MANAGEMENT},
}

TEAM_BUILDING_REQUIRES_ROSTER = (
    "To use team building, first upload employee data from Data Management."
)
HIRING_REQUIRES_ROSTER = (
    "To get hiring recommendations, first upload employee data from Data Management."
)

_ticket_ids = itertools.count(1)

class RequestTicket:
    """Handle for one in-flight request; stale once the machine moves on"""

    def __init__(self, kind: RequestKind):
        self.id = next(_ticket_ids)
        self.kind = kind
        self.token = CancelToken()

    def __repr__(self) -> str:
        return f"RequestTicket(id={self.id}, kind={self.kind.value})"

class ScreenStateMachine:
    """
    Single owner of screen state, mode, draft input, roster and results

    Every event validates the current state and either performs a
    transition or raises TransitionError leaving the machine untouched.
    """

    def __init__(self, roster: Optional[Iterable[EmployeeProfile]] = None):
        self.state: GameState = GameState.MODE_SELECTION
        self.mode: Optional[AppMode] = None
        self.draft: UserInputData = UserInputData()
        self.roster: List[EmployeeProfile] = list(roster or [])
        self.latest_result: Optional[Diagnosis] = None
        self.result_source: str = "new"
        self.analysis_profiles: List[Diagnosis] = []
        self.team_result: Optional[TeamBuildingResult] = None
        self.hiring_result: Optional[HiringRecommendation] = None
        self.error: Optional[str] = None
        self.loading_message: str = ""
        self.streaming_text: str = ""
        self.active_ticket: Optional[RequestTicket] = None

    # HELPERS

    def _require(self, *states: GameState) -> None:
        if self.state not in states:
            if self.state == GameState.LOADING:
                raise TransitionError("Another request is already in progress.")
            allowed = ", ".join(state.value for state in states)
            raise TransitionError(
                f"Cannot do this from '{self.state.value}' (allowed: {allowed})."
            )

    def _move(self, state: GameState) -> None:
        logger.debug(f"Screen transition {self.state.value} -> {state.value}")
        self.state = state

    def _to_error(self, message: str) -> None:
        self.error = message
        self._move(GameState.ERROR)

    def _clear_results(self) -> None:
        self.latest_result = None
        self.result_source = "new"
        self.team_result = None
        self.hiring_result = None
        self.error = None

    def _find_profile(self, profile_id: str) -> EmployeeProfile:
        for profile in self.roster:
            if profile.id == profile_id:
                return profile
        raise ValidationError(f"Profile {profile_id} was not found in the roster.")

    def is_current(self, ticket: RequestTicket) -> bool:
        return self.active_ticket is ticket and self.state == GameState.LOADING

    # MODE SELECTION

    def select_mode(self, mode: AppMode) -> GameState:
        self._require(GameState.MODE_SELECTION)

        if mode == AppMode.DATA_MANAGEMENT:
            self._move(GameState.DATA_MANAGEMENT)
            return self.state

        self.mode = mode
        if mode == AppMode.TEAM_BUILDING:
            if not self.roster:
                self._to_error(TEAM_BUILDING_REQUIRES_ROSTER)
            else:
                self._move(GameState.TEAM_BUILDING_SELECTION)
        else:
            self._move(GameState.INPUT)
        return self.state

    def open_hiring_setup(self) -> GameState:
        self._require(GameState.MODE_SELECTION, GameState.INPUT, GameState.RESULTS)
        if self.mode is None:
            self.mode = AppMode.RECRUITMENT
        if not self.roster:
            self._to_error(HIRING_REQUIRES_ROSTER)
        else:
            self._move(GameState.HIRING_RECOMMENDATION_SETUP)
        return self.state

    # INPUT AND MBTI QUIZ

    def update_draft(self, draft: UserInputData) -> None:
        self._require(GameState.INPUT)
        self.draft = with_derived_signs(draft)

    def start_mbti_quiz(self, draft: Optional[UserInputData] = None) -> GameState:
        self._require(GameState.INPUT)
        if draft is not None:
            self.draft = with_derived_signs(draft)
        self._move(GameState.MBTI_QUIZ)
        return self.state

    def complete_mbti_quiz(self, answers: Mapping[Any, Union[int, str]],
                           questions: Optional[List[MbtiQuestion]] = None) -> GameState:
        self._require(GameState.MBTI_QUIZ)
        self.error = None
        try:
            mbti_type = score_mbti(questions or MBTI_QUESTIONS, answers)
        except ValidationError as e:
            logger.warning(f"MBTI scoring failed: {e}")
            self._to_error(f"MBTI diagnosis failed: {e.message}")
            return self.state

        self.draft = self.draft.model_copy(update={"mbti": mbti_type})
        self._move(GameState.INPUT)
        return self.state

    # ASYNCHRONOUS REQUESTS

    def begin_request(self, kind: RequestKind, message: str) -> RequestTicket:
        """Enter the loading screen; only one request may be in flight"""
        self._require(*_REQUEST_ORIGINS[kind])

        ticket = RequestTicket(kind)
        self.active_ticket = ticket
        self.loading_message = message
        self.streaming_text = ""
        self.error = None
        self._move(GameState.LOADING)
        logger.info(f"Started {ticket}: {message}")
        return ticket

    def observer_for(self, ticket: RequestTicket) -> ChunkObserver:
        """Chunk observer that stops forwarding once the ticket is stale"""
        def observe(chunk: str) -> None:
            if self.is_current(ticket):
                self.streaming_text += chunk
        return observe

    def succeed(self, ticket: RequestTicket, payload: Any) -> bool:
        """Store a decoded payload; returns False for a stale ticket"""
        if not self.is_current(ticket):
            logger.info(f"Ignoring result of stale {ticket}")
            return False

        if ticket.kind == RequestKind.DIAGNOSIS:
            self.latest_result = payload
            self.result_source = "new"
        elif ticket.kind == RequestKind.TEAM_BUILDING:
            self.team_result = payload
        elif ticket.kind == RequestKind.HIRING:
            self.hiring_result = payload
        elif ticket.kind == RequestKind.IMPORT:
            self.roster = list(payload)

        self.active_ticket = None
        self.loading_message = ""
        self._move(_REQUEST_OUTCOMES[ticket.kind][0])
        return True

    def fail(self, ticket: RequestTicket, cause: Exception) -> bool:
        """
        Move to the error screen with a domain-prefixed message

        Only messages of domain errors are shown; anything else becomes a
        generic message.
        """
        if not self.is_current(ticket):
            logger.info(f"Ignoring failure of stale {ticket}: {cause}")
            return False

        prefix = _REQUEST_OUTCOMES[ticket.kind][1]
        if isinstance(cause, HRStrategyError):
            message = f"{prefix}: {cause.message}"
        else:
            message = f"{prefix}: an unknown error occurred."

        self.active_ticket = None
        self.loading_message = ""
        self._to_error(message)
        return True

    def show_error(self, message: str) -> GameState:
        """Error raised outside a request, e.g. a failed export"""
        if self.state == GameState.LOADING:
            raise TransitionError("Another request is already in progress.")
        self._to_error(message)
        return self.state

    # RESULTS AND ROSTER

    def add_latest_to_roster(self) -> GameState:
        """Promote the latest diagnosis into the roster"""
        self._require(GameState.RESULTS)
        result = self.latest_result
        if result is None or self.result_source != "new":
            raise TransitionError("There is no new diagnosis to add.")

        if not re.match(MBTI_PATTERN, self.draft.mbti):
            raise ValidationError("An MBTI type is required to add this person to the roster.")

        department = self.draft.department
        if not department and result.department_recommendations:
            department = result.department_recommendations[0].department

        profile = EmployeeProfile(
            id=result.id,
            name=result.name,
            department=department or "Unassigned",
            years_of_service=self.draft.years_of_service or 0,
            birth_date=self.draft.birth_date,
            gender=self.draft.gender,
            blood_type=self.draft.blood_type,
            zodiac=self.draft.zodiac,
            eto=self.draft.eto,
            mbti=self.draft.mbti,
            diagnosis=result.report(),
        )
        self.roster.append(profile)
        logger.info(f"Added {profile.name} to roster ({len(self.roster)} profiles)")

        if self.mode == AppMode.RECRUITMENT:
            self.latest_result = None
            self.draft = UserInputData()
            self._move(GameState.INPUT)
        else:
            self.mode = AppMode.TEAM_BUILDING
            self.analysis_profiles = [result]
            self._move(GameState.TEAM_BUILDING_ANALYSIS)
        return self.state

    def select_team_members(self, profile_ids: List[str]) -> GameState:
        self._require(GameState.TEAM_BUILDING_SELECTION)
        self.analysis_profiles = [self._find_profile(pid).as_diagnosis() for pid in profile_ids]
        self._move(GameState.TEAM_BUILDING_ANALYSIS)
        return self.state

    def remove_analysis_profile(self, profile_id: str) -> None:
        self._require(GameState.TEAM_BUILDING_ANALYSIS)
        self.analysis_profiles = [p for p in self.analysis_profiles if p.id != profile_id]

    def view_profile(self, profile_id: str) -> GameState:
        self._require(GameState.DATA_MANAGEMENT)
        self.latest_result = self._find_profile(profile_id).as_diagnosis()
        self.result_source = "db"
        self._move(GameState.RESULTS)
        return self.state

    def back_to_data_management(self) -> GameState:
        self._require(GameState.RESULTS)
        if self.result_source != "db":
            raise TransitionError("This result was not opened from Data Management.")
        self.latest_result = None
        self.result_source = "new"
        self._move(GameState.DATA_MANAGEMENT)
        return self.state

    def restart(self) -> GameState:
        """Start a fresh diagnosis in the current mode"""
        self._require(GameState.RESULTS, GameState.INPUT)
        if self.mode is None:
            raise TransitionError("Select a mode first.")
        self.latest_result = None
        self.result_source = "new"
        self.error = None
        self.draft = UserInputData()
        self._move(GameState.INPUT)
        return self.state

    def reset(self) -> GameState:
        """Return to mode selection, dropping everything except the roster"""
        if self.active_ticket is not None:
            self.active_ticket.token.cancel()
            logger.info(f"Cancelled {self.active_ticket} on reset")
        self.active_ticket = None
        self.mode = None
        self.draft = UserInputData()
        self.analysis_profiles = []
        self._clear_results()
        self.loading_message = ""
        self.streaming_text = ""
        self._move(GameState.MODE_SELECTION)
        return self.state

    # SNAPSHOT

    def snapshot(self) -> Dict[str, Any]:
        def dump(model: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
            return model.model_dump() if model is not None else None

        return {
            "state": self.state.value,
            "mode": self.mode.value if self.mode else None,
            "draft": self.draft.model_dump(),
            "roster_size": len(self.roster),
            "latest_result": dump(self.latest_result),
            "result_source": self.result_source,
            "analysis_profiles": [p.model_dump() for p in self.analysis_profiles],
            "team_result": dump(self.team_result),
            "hiring_result": dump(self.hiring_result),
            "error": self.error,
            "loading_message": self.loading_message,
            "streaming_text": self.streaming_text,
        }
