"""Tests for backup export/import."""

import json
from datetime import date

import pytest

from vocabmaster.errors import ValidationError
from vocabmaster.schema import AppState, WordItem
from vocabmaster.transfer import export_document, export_filename, parse_import


def _state():
    return AppState(
        words=[
            WordItem(id="seed-1-0", word="Abate", leitner_box=5, mastered=True, next_review_date=99),
            WordItem(id="custom-2-abcde", word="Obdurate", is_custom=True, user_mnemonic="stubborn door"),
        ],
        streak=7,
        last_login_date="2026-10-18",
        dark_mode=True,
    )


def test_export_filename():
    assert export_filename(date(2026, 10, 18)) == "gre-vocab-master-backup-2026-10-18.json"


def test_exported_document_imports_back():
    doc = export_document(_state())
    assert doc["words"][0]["leitnerBox"] == 5
    assert doc["darkMode"] is True

    assert parse_import(json.dumps(doc)) == _state()
    assert parse_import(json.dumps(doc).encode()) == _state()


def test_import_accepts_older_backups():
    legacy = {
        "words": [{
            "id": "seed-1-0",
            "word": "Abate",
            "definitions": ["to lessen"],
            "examples": [],
            "synonyms": [],
            "etymology": None,
            "aiMnemonic": "",
            "aiImageUrl": "https://img.test/abate.png",
            "leitnerBox": 1,
            "nextReviewDate": 1760000000000.0,
            "mastered": False,
        }],
        "streak": 2,
        "lastLoginDate": "Sat Oct 17 2026",
        "dailyGoal": 20,
        "dailyProgress": 4,
    }
    state = parse_import(legacy)
    word = state.words[0]

    assert word.definitions[0].definition == "to lessen"
    assert word.image_ref == "https://img.test/abate.png"
    assert word.next_review_date == 1760000000000
    assert word.etymology == ""
    assert state.daily_unique_progress == 0


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2, 3]",
    {"streak": 3},
    {"words": [], "streak": "3"},
    {"words": [], "streak": True},
    {"words": {"a": 1}, "streak": 3},
    {"words": [{"id": "seed-1-0"}], "streak": 3},
    {"words": [{"id": "x", "word": "A"}, {"id": "x", "word": "B"}], "streak": 0},
    {"words": [{"id": "x", "word": "A", "leitnerBox": 9}], "streak": 0},
    {"words": [{"id": "x", "word": "A", "leitnerBox": 2, "mastered": True}], "streak": 0},
])
def test_invalid_backups_are_rejected(raw):
    with pytest.raises(ValidationError):
        parse_import(raw)


def test_whole_float_streak_is_accepted():
    assert parse_import({"words": [], "streak": 3.0}).streak == 3
