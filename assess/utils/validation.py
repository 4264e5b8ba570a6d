"""Validation utilities."""
import re

from fastapi import HTTPException

# Matches the width of the id columns
MAX_ID_LENGTH = 64

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@:-]*$")


def validate_id(name: str, value: str) -> str:
    """
    Check a student, assessment, problem or attempt id from a request.

    Raises:
        HTTPException: 400 if missing, too long, or containing path characters.
    """
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=400, detail=f"{name} is required")
    cleaned = value.strip()
    if len(cleaned) > MAX_ID_LENGTH or not _ID_PATTERN.match(cleaned):
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
    return cleaned
