import json
import re
import logging
from typing import Any, Callable, Dict, List, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import DecodeError, ValidationError
from .models import DiagnosisReport, TeamBuildingResult, HiringRecommendation

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

FENCE_RE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)

LEGACY_JOB_REASON = "Expected to thrive in this field."

def extract_json_text(text: str) -> str:
    """Strip outer whitespace and, when the whole blob is fenced, the fence"""
    cleaned = text.strip()
    match = FENCE_RE.match(cleaned)
    if match and match.group(2):
        cleaned = match.group(2).strip()
    return cleaned

def decode_json(text: str) -> Dict[str, Any]:
    """
    Parse the single JSON object contained in a provider response

    Raises:
        DecodeError: text is not a JSON object, optionally fenced
    """
    try:
        parsed = json.loads(extract_json_text(text))
    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"Failed to parse JSON response: {e}. Original string: {text!r}")
        raise DecodeError(text)

    if not isinstance(parsed, dict):
        logger.error(f"Expected a JSON object, got {type(parsed).__name__}")
        raise DecodeError(text)
    return parsed

# Migrations for older response shapes

def _suitable_jobs_to_recommendations(data: Dict[str, Any]) -> Dict[str, Any]:
    jobs = data.get("suitable_jobs")
    if not isinstance(jobs, list) or data.get("department_recommendations") is not None:
        return data
    migrated = dict(data)
    migrated["department_recommendations"] = [
        {"department": str(job), "reason": LEGACY_JOB_REASON} for job in jobs
    ]
    del migrated["suitable_jobs"]
    logger.info(f"Migrated {len(jobs)} legacy suitable_jobs entries")
    return migrated

DIAGNOSIS_MIGRATIONS: List[Callable[[Dict[str, Any]], Dict[str, Any]]] = [
    _suitable_jobs_to_recommendations,
]

def _validate(model: Type[T], data: Dict[str, Any]) -> T:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        logger.error(f"Response does not match {model.__name__}: {e}")
        raise ValidationError("The AI response is missing required fields.")

def decode_diagnosis(text: str) -> DiagnosisReport:
    """Decode a comprehensive diagnosis, applying the legacy migrations"""
    data = decode_json(text)
    for migrate in DIAGNOSIS_MIGRATIONS:
        data = migrate(data)

    report = _validate(DiagnosisReport, data)
    if not report.department_recommendations:
        logger.error("Diagnosis rejected: no department recommendations")
        raise ValidationError("The AI response did not include any department recommendations.")
    return report

def decode_team_building(text: str) -> TeamBuildingResult:
    return _validate(TeamBuildingResult, decode_json(text))

def decode_hiring_recommendation(text: str) -> HiringRecommendation:
    return _validate(HiringRecommendation, decode_json(text))
