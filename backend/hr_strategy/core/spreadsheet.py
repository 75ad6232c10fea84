import io
import json
import re
import uuid
import logging
from typing import Any, Dict, Iterable, List, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter
from pydantic import ValidationError as PydanticValidationError

from .errors import FileFormatError
from .models import DiagnosisReport, EmployeeProfile, ManagerView, MBTI_PATTERN
from .utils import normalize_date_cell

logger = logging.getLogger(__name__)

# Header row, in column order, with display widths
COLUMNS = [
    ("ID", 36),
    ("Name", 15),
    ("Department", 15),
    ("YearsOfService", 10),
    ("BirthDate", 12),
    ("Gender", 8),
    ("BloodType", 8),
    ("Zodiac", 8),
    ("Eto", 8),
    ("MBTI", 8),
    ("DiagnosisJSON", 100),
]
HEADERS = [name for name, _ in COLUMNS]
REQUIRED_HEADERS = set(HEADERS)

_MBTI_RE = re.compile(MBTI_PATTERN)

def unavailable_diagnosis() -> DiagnosisReport:
    """Placeholder for rows without a usable diagnosis"""
    return DiagnosisReport(
        title="Diagnosis unavailable",
        overall="The spreadsheet does not contain a valid diagnosis JSON for this person.",
        strengths=[],
        weaknesses=[],
        ideal_work_style="",
        communication_style="",
        department_recommendations=[],
        manager_view=ManagerView(),
    )

def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()

def _years(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError):
        logger.warning(f"Unreadable years of service {value!r}, using 0")
        return 0

def _diagnosis(value: Any, row_number: int) -> DiagnosisReport:
    if not isinstance(value, str):
        logger.warning(f"Row {row_number}: diagnosis column is missing")
        return unavailable_diagnosis()
    try:
        return DiagnosisReport.model_validate(json.loads(value))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        logger.warning(f"Row {row_number}: invalid diagnosis JSON ({e})")
        return unavailable_diagnosis()

def profile_to_row(profile: EmployeeProfile) -> Dict[str, Any]:
    return {
        "ID": profile.id,
        "Name": profile.name,
        "Department": profile.department,
        "YearsOfService": profile.years_of_service,
        "BirthDate": profile.birth_date,
        "Gender": profile.gender,
        "BloodType": profile.blood_type,
        "Zodiac": profile.zodiac,
        "Eto": profile.eto,
        "MBTI": profile.mbti,
        "DiagnosisJSON": json.dumps(
            profile.diagnosis.model_dump(), ensure_ascii=False, indent=2
        ),
    }

def row_to_profile(row: Dict[str, Any], row_number: int = 0) -> EmployeeProfile:
    """
    Build a profile from one spreadsheet row

    A bad diagnosis column only affects this row; an invalid MBTI code is a
    file format error because roster entries must carry a valid type.
    """
    mbti = _text(row.get("MBTI")).upper()
    if not _MBTI_RE.match(mbti):
        raise FileFormatError(
            f"Row {row_number}: MBTI '{mbti}' is not a valid four-letter type."
        )

    return EmployeeProfile(
        id=_text(row.get("ID")) or str(uuid.uuid4()),
        name=_text(row.get("Name")),
        department=_text(row.get("Department")),
        years_of_service=_years(row.get("YearsOfService")),
        birth_date=normalize_date_cell(row.get("BirthDate")),
        gender=_text(row.get("Gender")),
        blood_type=_text(row.get("BloodType")),
        zodiac=_text(row.get("Zodiac")),
        eto=_text(row.get("Eto")),
        mbti=mbti,
        diagnosis=_diagnosis(row.get("DiagnosisJSON"), row_number),
    )

def encode_rows(profiles: Iterable[EmployeeProfile]) -> List[Dict[str, Any]]:
    return [profile_to_row(profile) for profile in profiles]

def decode_rows(rows: Iterable[Dict[str, Any]]) -> List[EmployeeProfile]:
    """Rows are numbered from 2, matching the sheet below its header"""
    profiles = []
    for row_number, row in enumerate(rows, start=2):
        if all(value is None or value == "" for value in row.values()):
            continue
        profiles.append(row_to_profile(row, row_number))
    return profiles

def export_workbook(profiles: Iterable[EmployeeProfile], sheet_name: str = "Employees") -> bytes:
    """Serialize the roster into .xlsx bytes"""
    try:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = sheet_name

        sheet.append(HEADERS)
        for cell in sheet[1]:
            cell.font = Font(bold=True)

        for row in encode_rows(profiles):
            sheet.append([row[header] for header in HEADERS])

        for index, (_, width) in enumerate(COLUMNS, start=1):
            sheet.column_dimensions[get_column_letter(index)].width = width
        for cell in sheet[get_column_letter(len(COLUMNS))][1:]:
            cell.alignment = Alignment(wrap_text=True, vertical="top")

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()
    except Exception as e:
        logger.error(f"Error exporting to Excel: {e}", exc_info=True)
        raise FileFormatError("Failed to export the spreadsheet.") from e

def _read_rows(data: bytes) -> List[Dict[str, Any]]:
    try:
        workbook = load_workbook(io.BytesIO(data), data_only=True)
    except Exception as e:
        logger.error(f"Error opening Excel file: {e}")
        raise FileFormatError() from e

    sheet = workbook.worksheets[0]
    rows = sheet.iter_rows(values_only=True)
    header_row: Optional[tuple] = next(rows, None)
    if not header_row:
        raise FileFormatError("The spreadsheet is empty.")

    headers = [_text(value) for value in header_row]
    missing = REQUIRED_HEADERS - set(headers)
    if missing:
        raise FileFormatError(
            f"The spreadsheet is missing required columns: {', '.join(sorted(missing))}."
        )

    return [
        {header: value for header, value in zip(headers, values) if header}
        for values in rows
    ]

def import_workbook(data: bytes) -> List[EmployeeProfile]:
    """Parse .xlsx bytes into roster profiles"""
    profiles = decode_rows(_read_rows(data))
    logger.info(f"Imported {len(profiles)} profiles from spreadsheet")
    return profiles
