# vocabmaster/state.py
from __future__ import annotations

import asyncio
import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, TypeVar, Union

from .config import TZ
from .errors import StorageError, UnknownWord
from .schema import CUSTOM_PREFIX, AppState, WordDetails, WordItem
from .srs import compute_transition
from .store import PersistentStore, now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SPLIT = re.compile(r"[\n,]+")
_ID_ALPHABET = string.ascii_lowercase + string.digits

# fields owned by enrichment; grading and the learner never write these
CONTENT_FIELDS = ("definitions", "examples", "synonyms", "etymology", "ai_mnemonic")


def today_in_tz() -> date:
    return datetime.now(TZ).date()


def parse_login_date(s: str) -> Optional[date]:
    """ISO dates, plus the "Sun Oct 18 2026" form found in older backups."""
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    try:
        return datetime.strptime(s, "%a %b %d %Y").date()
    except ValueError:
        return None


def roll_over_day(state: AppState, today: date) -> AppState:
    """Start a new calendar day: bump or reset the streak and zero the daily counters."""
    last = parse_login_date(state.last_login_date)
    if last == today:
        if state.last_login_date == today.isoformat():
            return state
        return state.model_copy(update={"last_login_date": today.isoformat()})

    streak = state.streak + 1 if last == today - timedelta(days=1) else 1
    return state.model_copy(update={
        "streak": streak,
        "last_login_date": today.isoformat(),
        "daily_progress": 0,
        "daily_unique_progress": 0,
    })


def parse_word_list(raw: Union[str, Iterable[str]]) -> List[str]:
    """Split on commas/newlines, trim, drop blanks and case-insensitive repeats."""
    parts = _SPLIT.split(raw) if isinstance(raw, str) else list(raw)
    seen, out = set(), []
    for p in parts:
        w = p.strip()
        if w and w.lower() not in seen:
            seen.add(w.lower())
            out.append(w)
    return out


def custom_id(now: int) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(5))
    return f"{CUSTOM_PREFIX}{now}-{suffix}"


@dataclass
class GradeResult:
    word: WordItem
    prior_box: int

    @property
    def first_exposure(self) -> bool:
        return self.prior_box == 0


@dataclass
class AddWordsResult:
    ids: List[str] = field(default_factory=list)
    created: int = 0
    updated: int = 0


class AppStateActor:
    """
    Single owner of the AppState document.

    Every change is a read-modify-replace cycle run under one lock: the mutation
    is applied to a deep copy of the current document, the copy is persisted,
    and only then does it become the current document. A failed save therefore
    leaves the in-memory state exactly as it was.
    """

    def __init__(
        self,
        store: PersistentStore,
        clock: Callable[[], int] = now_ms,
        today: Callable[[], date] = today_in_tz,
    ):
        self._store = store
        self._clock = clock
        self._today = today
        self._state: Optional[AppState] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._state is not None

    def now(self) -> int:
        return self._clock()

    def _require(self) -> AppState:
        if self._state is None:
            raise StorageError("State has not been loaded; call open() first")
        return self._state

    async def open(self) -> AppState:
        async with self._lock:
            loaded = await self._store.load()
            rolled = roll_over_day(loaded, self._today())
            if rolled is not loaded:
                await self._store.save(rolled)
                logger.info("New day %s, streak=%d", rolled.last_login_date, rolled.streak)
            self._state = rolled
            return rolled.model_copy(deep=True)

    def snapshot(self) -> AppState:
        return self._require().model_copy(deep=True)

    def get_word(self, word_id: str) -> Optional[WordItem]:
        word = self._require().get_word(word_id)
        return word.model_copy(deep=True) if word else None

    async def mutate(self, fn: Callable[[AppState], T]) -> T:
        """Apply fn to a draft of the current document, persist it, then swap it in."""
        async with self._lock:
            draft = self._require().model_copy(deep=True)
            result = fn(draft)
            await self._store.save(draft)
            self._state = draft
            return result

    async def check_day(self) -> AppState:
        """Roll counters over if the calendar day changed while running."""
        today = self._today()

        def apply(draft: AppState) -> AppState:
            rolled = roll_over_day(draft, today)
            for name in ("streak", "last_login_date", "daily_progress", "daily_unique_progress"):
                setattr(draft, name, getattr(rolled, name))
            return draft.model_copy(deep=True)

        if parse_login_date(self._require().last_login_date) == today:
            return self.snapshot()
        return await self.mutate(apply)

    # ───────── grading ─────────

    async def apply_grade(self, word_id: str, is_correct: bool) -> GradeResult:
        now = self._clock()

        def apply(draft: AppState) -> GradeResult:
            word = draft.get_word(word_id)
            if word is None:
                raise UnknownWord(word_id)
            prior = word.leitner_box
            box, next_review = compute_transition(prior, is_correct, now)
            word.leitner_box = box
            word.next_review_date = next_review
            word.mastered = box >= 5
            word.last_review = now
            draft.daily_progress += 1
            if prior == 0:
                draft.daily_unique_progress += 1
            return GradeResult(word=word.model_copy(deep=True), prior_box=prior)

        return await self.mutate(apply)

    # ───────── enrichment merges ─────────

    async def merge_enrichment(self, word_id: str, details: WordDetails) -> bool:
        """Upsert content fields onto the current version of the word.

        Returns False (and writes nothing) when the word no longer exists.
        """
        def apply(draft: AppState) -> None:
            word = draft.get_word(word_id)
            if word is None:
                raise UnknownWord(word_id)
            for name in CONTENT_FIELDS:
                setattr(word, name, getattr(details, name))

        try:
            await self.mutate(apply)
        except UnknownWord:
            logger.info("Discarding enrichment for deleted word %s", word_id)
            return False
        return True

    async def merge_image(self, word_id: str, image_ref: str) -> bool:
        def apply(draft: AppState) -> None:
            word = draft.get_word(word_id)
            if word is None:
                raise UnknownWord(word_id)
            word.image_ref = image_ref

        try:
            await self.mutate(apply)
        except UnknownWord:
            logger.info("Discarding image for deleted word %s", word_id)
            return False
        return True

    # ───────── learner edits ─────────

    async def set_user_mnemonic(self, word_id: str, mnemonic: Optional[str]) -> WordItem:
        def apply(draft: AppState) -> WordItem:
            word = draft.get_word(word_id)
            if word is None:
                raise UnknownWord(word_id)
            word.user_mnemonic = (mnemonic or "").strip() or None
            return word.model_copy(deep=True)

        return await self.mutate(apply)

    async def add_custom_words(self, raw: Union[str, Iterable[str]]) -> AddWordsResult:
        """Add learner words; ones already present are tagged custom instead of duplicated."""
        headwords = parse_word_list(raw)
        now = self._clock()

        def apply(draft: AppState) -> AddWordsResult:
            result = AddWordsResult()
            for hw in headwords:
                existing = draft.find_by_headword(hw)
                if existing is not None:
                    existing.is_custom = True
                    result.ids.append(existing.id)
                    result.updated += 1
                    continue
                word = WordItem(id=custom_id(now), word=hw, is_custom=True)
                while draft.get_word(word.id) is not None:
                    word.id = custom_id(now)
                draft.words.append(word)
                result.ids.append(word.id)
                result.created += 1
            return result

        if not headwords:
            return AddWordsResult()
        return await self.mutate(apply)

    async def remove_word(self, word_id: str) -> None:
        def apply(draft: AppState) -> None:
            i = draft.index_of(word_id)
            if i < 0:
                raise UnknownWord(word_id)
            del draft.words[i]

        await self.mutate(apply)

    async def update_settings(self, dark_mode: Optional[bool] = None, daily_goal: Optional[int] = None) -> AppState:
        if daily_goal is not None and daily_goal < 1:
            raise ValueError("daily_goal must be >= 1")

        def apply(draft: AppState) -> AppState:
            if dark_mode is not None:
                draft.dark_mode = dark_mode
            if daily_goal is not None:
                draft.daily_goal = daily_goal
            return draft.model_copy(deep=True)

        return await self.mutate(apply)

    async def replace(self, state: AppState) -> None:
        """Swap in a whole new document (import). Persisted before it becomes current."""
        async with self._lock:
            new_state = state.model_copy(deep=True)
            await self._store.save(new_state)
            self._state = new_state
            logger.info("State replaced: %d words", len(new_state.words))
