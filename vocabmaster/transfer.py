# vocabmaster/transfer.py
from __future__ import annotations

import json
from datetime import date
from typing import Any, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .schema import AppState


def export_document(state: AppState) -> dict:
    return state.to_document()


def export_filename(day: date) -> str:
    return f"gre-vocab-master-backup-{day.isoformat()}.json"


def parse_import(raw: Union[str, bytes, dict, Any]) -> AppState:
    """Validate a backup document. Nothing is replaced here; that needs explicit confirmation."""
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Backup is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ValidationError("Backup must be a JSON object")
    streak = raw.get("streak")
    # bool is an int subclass; a JSON number may arrive as 3.0
    numeric = isinstance(streak, (int, float)) and not isinstance(streak, bool)
    if not isinstance(raw.get("words"), list) or not numeric:
        raise ValidationError("Invalid file format: 'words' list and numeric 'streak' are required")
    try:
        return AppState.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid backup: {e}") from e
