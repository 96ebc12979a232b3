# vocabmaster/session.py
from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from .config import SESSION_LOOKAHEAD, WORDS_PER_SET
from .enrichment import Enricher
from .errors import ConfirmationRequired, EmptyDeck, NoActiveSession, UnknownWord
from .schema import WordItem
from .srs import (
    CATEGORIES, ORDERS, needs_study, order_deck, select_category, select_new_set,
    select_review_queue,
)
from .state import AppStateActor, GradeResult

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"      # current card is still waiting for its content
    ACTIVE = "active"
    COMPLETE = "complete"


class SessionController:
    """One study session: a fixed deck of word ids walked front to back.

    Content is fetched lazily: starting a session never waits on the provider.
    The current card and the next ``lookahead`` cards get a background fetch
    if they have no definitions yet; ``reveal()`` waits for the current one.
    A card whose fetch failed can still be graded.
    """

    def __init__(
        self,
        state: AppStateActor,
        enricher: Enricher,
        lookahead: int = SESSION_LOOKAHEAD,
        page_size: int = WORDS_PER_SET,
        rng: Optional[random.Random] = None,
    ):
        self._state = state
        self._enricher = enricher
        self.lookahead = max(0, lookahead)
        self.page_size = page_size
        self._rng = rng
        self.deck: List[str] = []
        self.index = 0
        self.reviewed = 0
        self._complete = False
        self._fetches: Dict[str, asyncio.Task] = {}
        # every fetch ever spawned, including ones left over from a previous deck
        self._background: Set[asyncio.Task] = set()

    # ───────── deck construction ─────────

    def review_deck(self) -> List[str]:
        words = self._state.snapshot().words
        return [w.id for w in select_review_queue(words, self._state.now())]

    def set_deck(self, set_index: int, confirm_full_review: bool = False) -> List[str]:
        members = select_new_set(self._state.snapshot().words, set_index, self.page_size)
        if not members:
            raise EmptyDeck(f"There is no set {set_index + 1}")
        to_study = [w for w in members if needs_study(w)]
        if not to_study:
            if not confirm_full_review:
                raise ConfirmationRequired(set_index, len(members))
            to_study = members
        return [w.id for w in to_study]

    def category_deck(self, kind: str, order: str = "random") -> List[str]:
        if kind not in CATEGORIES:
            raise ValueError(f"Unknown category: {kind}")
        if order not in ORDERS:
            raise ValueError(f"Unknown order: {order}")
        words = select_category(self._state.snapshot().words, kind)
        return [w.id for w in order_deck(words, order, self._rng)]

    # ───────── lifecycle ─────────

    def start(self, word_ids: Iterable[str]) -> None:
        ids = [wid for wid in dedupe_ids(word_ids) if self._state.get_word(wid) is not None]
        if not ids:
            raise EmptyDeck("No words selected to study")
        self.deck = ids
        self.index = 0
        self.reviewed = 0
        self._complete = False
        self._fetches = {}
        logger.info("Session started with %d card(s)", len(ids))
        self._schedule_fetches()

    def start_review(self) -> None:
        self.start(self.review_deck())

    def start_set(self, set_index: int, confirm_full_review: bool = False) -> None:
        self.start(self.set_deck(set_index, confirm_full_review))

    def start_category(self, kind: str, order: str = "random") -> None:
        self.start(self.category_deck(kind, order))

    def start_word(self, word_id: str) -> None:
        self.start([word_id])

    async def close(self) -> None:
        tasks = [t for t in self._background if not t.done()]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._fetches = {}

    async def reset(self) -> None:
        await self.close()
        self.deck = []
        self.index = 0
        self.reviewed = 0
        self._complete = False

    # ───────── current card ─────────

    @property
    def status(self) -> SessionStatus:
        if not self.deck:
            return SessionStatus.IDLE
        if self._complete:
            return SessionStatus.COMPLETE
        if self.is_loading():
            return SessionStatus.LOADING
        return SessionStatus.ACTIVE

    def current_id(self) -> Optional[str]:
        if not self.deck or self._complete:
            return None
        return self.deck[self.index]

    def current_word(self) -> Optional[WordItem]:
        word_id = self.current_id()
        return self._state.get_word(word_id) if word_id else None

    def is_loading(self) -> bool:
        word_id = self.current_id()
        if word_id is None:
            return False
        task = self._fetches.get(word_id)
        return task is not None and not task.done()

    async def reveal(self) -> Optional[WordItem]:
        """Wait for the current card's fetch (if any) and return the card.

        The card comes back without definitions when the fetch failed.
        """
        word_id = self.current_id()
        if word_id is None:
            raise NoActiveSession("No card to reveal")
        task = self._fetches.get(word_id)
        if task is not None:
            await asyncio.wait({task})
        return self._state.get_word(word_id)

    # ───────── grading ─────────

    async def grade(self, is_correct: bool) -> GradeResult:
        """Grade the current card and move on.

        The grade is persisted before this returns; on StorageError the session
        stays on the same card. A card deleted mid-session is passed over and
        UnknownWord is re-raised.
        """
        word_id = self.current_id()
        if word_id is None:
            raise NoActiveSession("No card to grade")
        try:
            result = await self._state.apply_grade(word_id, is_correct)
        except UnknownWord:
            logger.info("Card %s was deleted mid-session; moving on", word_id)
            self._advance()
            raise
        self.reviewed += 1
        self._advance()
        return result

    def skip(self) -> None:
        if self.current_id() is None:
            raise NoActiveSession("No card to skip")
        self._advance()

    def _advance(self) -> None:
        if self.index < len(self.deck) - 1:
            self.index += 1
            self._schedule_fetches()
        else:
            self._complete = True
            logger.info("Session complete: %d card(s) reviewed", self.reviewed)

    # ───────── lazy enrichment ─────────

    def _schedule_fetches(self) -> None:
        end = min(len(self.deck), self.index + 1 + self.lookahead)
        for i in range(self.index, end):
            word_id = self.deck[i]
            word = self._state.get_word(word_id)
            if word is None or word.is_enriched:
                continue
            task = self._fetches.get(word_id)
            # a finished-but-failed prefetch gets another go once the card is current
            if task is None or (i == self.index and task.done()):
                self._fetches[word_id] = self._spawn(word_id)

    def _spawn(self, word_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._enricher.ensure(word_id), name=f"session-fetch-{word_id}")
        task.add_done_callback(_log_unexpected)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def view(self) -> dict:
        word = self.current_word()
        return {
            "status": self.status.value,
            "index": self.index,
            "total": len(self.deck),
            "reviewed": self.reviewed,
            "card": word.model_dump(mode="json", by_alias=True) if word else None,
        }


def dedupe_ids(ids: Iterable[str]) -> List[str]:
    seen, out = set(), []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def _log_unexpected(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Card fetch crashed: %r", exc, exc_info=exc)
