from datetime import date, datetime
from typing import Any, Optional
import logging

from .models import UserInputData

logger = logging.getLogger(__name__)

UNKNOWN_DATE = "unknown date"

ZODIAC_SIGNS = [
    "Aries", "Taurus", "Gemini", "Cancer", "Leo", "Virgo",
    "Libra", "Scorpio", "Sagittarius", "Capricorn", "Aquarius", "Pisces"
]

ETO_SIGNS = [
    "Rat", "Ox", "Tiger", "Rabbit", "Dragon", "Snake",
    "Horse", "Goat", "Monkey", "Rooster", "Dog", "Boar"
]

# (month, first day) on which each sign starts, Aries first
_ZODIAC_STARTS = [
    (3, 21), (4, 20), (5, 21), (6, 22), (7, 23), (8, 23),
    (9, 23), (10, 24), (11, 23), (12, 22), (1, 20), (2, 19)
]

def get_zodiac_sign(day: date) -> str:
    """
    Western zodiac sign for a calendar date

    Args:
        day: Birth date

    Returns:
        Sign name from ZODIAC_SIGNS
    """
    key = (day.month, day.day)
    for index, start in enumerate(_ZODIAC_STARTS):
        end = _ZODIAC_STARTS[(index + 1) % 12]
        if start <= end:
            if start <= key < end:
                return ZODIAC_SIGNS[index]
        elif key >= start or key < end:  # Capricorn spans the new year
            return ZODIAC_SIGNS[index]
    return ""

def get_eto_sign(day: date) -> str:
    """Twelve-year animal sign; year 4 AD is a Rat year"""
    return ETO_SIGNS[(day.year - 4) % 12]

def parse_birth_date(value: str) -> Optional[date]:
    """Parse an ISO calendar date, returning None when it is not one"""
    try:
        return date.fromisoformat(value.strip()[:10])
    except (ValueError, AttributeError):
        return None

def normalize_date_cell(value: Any) -> str:
    """Spreadsheet date cell to ISO string, passthrough or UNKNOWN_DATE"""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return value
    return UNKNOWN_DATE

def with_derived_signs(data: UserInputData) -> UserInputData:
    """Fill zodiac and eto from the birth date when they were left blank"""
    if data.zodiac and data.eto:
        return data
    birth_date = parse_birth_date(data.birth_date)
    if birth_date is None:
        return data
    updates = {}
    if not data.zodiac:
        updates["zodiac"] = get_zodiac_sign(birth_date)
    if not data.eto:
        updates["eto"] = get_eto_sign(birth_date)
    return data.model_copy(update=updates)
