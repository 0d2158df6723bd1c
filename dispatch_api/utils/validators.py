"""
Input validation utilities
"""
from typing import Optional, Tuple

from dispatch_api.config import get_settings
from dispatch_api.utils.dates import is_date_key

settings = get_settings()


def validate_date_key(value: str) -> str:
    """Validate a YYYY-MM-DD calendar key"""
    if not is_date_key(value):
        raise ValueError("date is required and must be in YYYY-MM-DD format")
    return value


def validate_summary(summary: Optional[str]) -> Optional[str]:
    """Validate dispatch summary length"""
    if summary is not None and len(summary) > settings.SUMMARY_MAX_LENGTH:
        raise ValueError(f"summary must be at most {settings.SUMMARY_MAX_LENGTH} characters")
    return summary


def validate_calendar_month(year: int, month: int) -> Tuple[int, int]:
    """Validate a calendar month selector"""
    if month < 1 or month > 12 or year < 1 or year > 9999:
        raise ValueError("Invalid year or month")
    return year, month
