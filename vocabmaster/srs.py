# vocabmaster/srs.py
"""
Leitner scheduling and deck selection.

Everything here is a pure function over WordItem sequences: no I/O, no state,
and "now" is always passed in (epoch milliseconds).

Boxes:
- 0: untouched, surfaced only through course sets, never "due"
- 1..4: learning, reviewed at growing intervals
- 5: mastered, excluded from due review
A correct answer promotes one box (capped at 5); a wrong one sends the word
back to box 1 regardless of where it was.
"""
from __future__ import annotations

import math
import random
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .schema import MAX_BOX, WordItem

DAY_MS = 24 * 60 * 60 * 1000

# box -> days until the next review
INTERVAL_DAYS: Dict[int, int] = {0: 1, 1: 1, 2: 3, 3: 7, 4: 14, 5: 30}

DEFAULT_PAGE_SIZE = 30

CATEGORIES = ("mastered", "learning", "custom", "new")
ORDERS = ("random", "newest", "oldest")


# ───────── transitions ─────────

def compute_transition(current_box: int, is_correct: bool, now: int) -> Tuple[int, int]:
    """Return (new_box, next_review_date) after one grading event."""
    if is_correct:
        new_box = min(current_box + 1, MAX_BOX)
    else:
        new_box = 1
    return new_box, now + INTERVAL_DAYS[new_box] * DAY_MS


def is_due(word: WordItem, now: int) -> bool:
    if word.mastered:
        return False
    if word.leitner_box == 0:
        return False
    if not word.next_review_date:
        # in the learning pile without a date: review rather than starve it
        return True
    return now >= word.next_review_date


def select_review_queue(words: Iterable[WordItem], now: int) -> List[WordItem]:
    return [w for w in words if is_due(w, now)]


# ───────── course sets ─────────

def course_words(words: Iterable[WordItem]) -> List[WordItem]:
    return [w for w in words if w.is_course]


def set_count(words: Iterable[WordItem], page_size: int = DEFAULT_PAGE_SIZE) -> int:
    return math.ceil(len(course_words(words)) / page_size)


def select_new_set(words: Iterable[WordItem], set_index: int, page_size: int = DEFAULT_PAGE_SIZE) -> List[WordItem]:
    if set_index < 0:
        raise ValueError("set_index must be >= 0")
    start = set_index * page_size
    return course_words(words)[start:start + page_size]


def needs_study(word: WordItem) -> bool:
    return word.leitner_box == 0 or not word.mastered


def set_to_study(words: Iterable[WordItem], set_index: int, page_size: int = DEFAULT_PAGE_SIZE) -> List[WordItem]:
    return [w for w in select_new_set(words, set_index, page_size) if needs_study(w)]


def is_set_complete(members: Sequence[WordItem]) -> bool:
    return bool(members) and not any(needs_study(w) for w in members)


def set_progress(members: Sequence[WordItem]) -> float:
    """Share of mastered words in a set, 0.0 - 1.0."""
    if not members:
        return 0.0
    return sum(1 for w in members if w.mastered) / len(members)


# ───────── category decks ─────────

def in_category(word: WordItem, kind: str) -> bool:
    if kind == "mastered":
        return word.mastered
    if kind == "learning":
        return not word.mastered and word.leitner_box > 0
    if kind == "custom":
        return word.is_custom_word
    if kind == "new":
        return not word.mastered and word.leitner_box == 0
    if kind == "all":
        return True
    raise ValueError(f"Unknown category: {kind}")


def dedupe(words: Iterable[WordItem]) -> List[WordItem]:
    seen, out = set(), []
    for w in words:
        if w.id not in seen:
            seen.add(w.id)
            out.append(w)
    return out


def select_category(words: Iterable[WordItem], kind: str) -> List[WordItem]:
    return dedupe(w for w in words if in_category(w, kind))


def recency(word: WordItem) -> int:
    return word.last_review or word.created_at


def order_deck(words: Sequence[WordItem], order: str = "random", rng: Optional[random.Random] = None) -> List[WordItem]:
    out = list(words)
    if order == "random":
        (rng or random).shuffle(out)
    elif order == "newest":
        out.sort(key=recency, reverse=True)
    elif order == "oldest":
        out.sort(key=recency)
    else:
        raise ValueError(f"Unknown order: {order}")
    return out


# ───────── library / dashboard ─────────

def filter_library(words: Iterable[WordItem], search: str = "", kind: str = "all") -> List[WordItem]:
    needle = search.strip().lower()
    return [w for w in words if needle in w.word.lower() and in_category(w, kind)]


def deck_stats(words: Sequence[WordItem], now: int, page_size: int = DEFAULT_PAGE_SIZE) -> dict:
    course = course_words(words)
    sets = []
    for i in range(set_count(words, page_size)):
        members = course[i * page_size:(i + 1) * page_size]
        sets.append({
            "index": i,
            "size": len(members),
            "mastered": sum(1 for w in members if w.mastered),
            "progress": set_progress(members),
            "complete": is_set_complete(members),
        })
    return {
        "total": len(words),
        "due": len(select_review_queue(words, now)),
        "mastered": sum(1 for w in words if in_category(w, "mastered")),
        "learning": sum(1 for w in words if in_category(w, "learning")),
        "new": sum(1 for w in words if in_category(w, "new")),
        "custom": sum(1 for w in words if in_category(w, "custom")),
        "sets": sets,
    }
