# vocabmaster/enrichment.py
"""
Background enrichment.

Words are created with empty content; this module fills it in from the
ContentProvider without blocking study. IDs wait in a FIFO with set semantics
and are drained by a fixed number of worker tasks. A shared semaphore bounds
outbound requests, including the foreground fetches made through ``ensure``.

A failed fetch is logged and dropped. The word stays unenriched and is tried
again the next time something queues or opens it (``max_requeues`` allows a
few automatic retries instead).
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Protocol, Set

from .errors import ProviderError, StorageError
from .provider import ContentProvider
from .state import AppStateActor

logger = logging.getLogger(__name__)


class Enricher(Protocol):
    """What a study session needs to get content for a card."""

    async def ensure(self, word_id: str) -> bool:
        ...


class EnrichmentQueue:
    def __init__(
        self,
        state: AppStateActor,
        provider: ContentProvider,
        concurrency: int = 2,
        max_requeues: int = 0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._state = state
        self._provider = provider
        self.concurrency = concurrency
        self.max_requeues = max_requeues

        self._pending: Deque[str] = deque()
        self._queued: Set[str] = set()
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._requeues: Dict[str, int] = {}

        self._limit = asyncio.Semaphore(concurrency)
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._workers: List[asyncio.Task] = []

    # ───────── inspection ─────────

    @property
    def pending(self) -> List[str]:
        return list(self._pending)

    @property
    def in_flight(self) -> List[str]:
        return list(self._in_flight)

    def is_fetching(self, word_id: str) -> bool:
        return word_id in self._in_flight

    def _needs_enrichment(self, word_id: str) -> bool:
        word = self._state.get_word(word_id)
        return word is not None and not word.is_enriched

    # ───────── lifecycle ─────────

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"enrichment-{n}")
            for n in range(self.concurrency)
        ]
        if self._pending:
            self._wakeup.set()

    async def close(self) -> None:
        for t in self._workers:
            t.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def join(self) -> None:
        """Wait until nothing is queued or in flight."""
        # a failed word can be requeued right after the queue went idle
        while self._pending or self._in_flight:
            await self._idle.wait()

    def _update_idle(self) -> None:
        if self._pending or self._in_flight:
            self._idle.clear()
        else:
            self._idle.set()

    # ───────── queueing ─────────

    def enqueue(self, ids: Iterable[str]) -> int:
        """Queue words that still lack content. Returns how many were actually added."""
        added = 0
        for word_id in ids:
            if word_id in self._queued or word_id in self._in_flight:
                continue
            if not self._needs_enrichment(word_id):
                continue
            self._pending.append(word_id)
            self._queued.add(word_id)
            added += 1
        if added:
            logger.debug("Queued %d word(s) for enrichment (%d pending)", added, len(self._pending))
            self._update_idle()
            self._wakeup.set()
        return added

    def _pop(self) -> Optional[str]:
        if not self._pending:
            return None
        word_id = self._pending.popleft()
        self._queued.discard(word_id)
        return word_id

    async def _worker(self, n: int) -> None:
        while True:
            word_id = self._pop()
            if word_id is None:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            ok = await self._run(word_id)
            if not ok:
                self._maybe_requeue(word_id)

    def _maybe_requeue(self, word_id: str) -> None:
        tries = self._requeues.get(word_id, 0)
        if tries >= self.max_requeues or not self._needs_enrichment(word_id):
            self._requeues.pop(word_id, None)
            return
        self._requeues[word_id] = tries + 1
        logger.info("Requeueing %s for enrichment (retry %d/%d)", word_id, tries + 1, self.max_requeues)
        self.enqueue([word_id])

    # ───────── foreground ─────────

    async def ensure(self, word_id: str) -> bool:
        """Make sure this word is enriched now, jumping the queue if needed.

        Returns True when the word has content afterwards.
        """
        fut = self._in_flight.get(word_id)
        if fut is not None:
            return await asyncio.shield(fut)
        if word_id in self._queued:
            self._pending.remove(word_id)
            self._queued.discard(word_id)
        return await self._run(word_id)

    # ───────── processing ─────────

    async def _run(self, word_id: str) -> bool:
        fut = asyncio.get_running_loop().create_future()
        self._in_flight[word_id] = fut
        self._update_idle()
        ok = False
        try:
            async with self._limit:
                ok = await self._fetch_and_merge(word_id)
        except StorageError:
            logger.exception("Could not persist enrichment for %s", word_id)
        except Exception:
            # the worker must outlive a bad word
            logger.exception("Enrichment crashed for %s", word_id)
        finally:
            del self._in_flight[word_id]
            if not fut.done():
                fut.set_result(ok)
            self._update_idle()
        return ok

    async def _fetch_and_merge(self, word_id: str) -> bool:
        word = self._state.get_word(word_id)
        if word is None:
            logger.debug("Dropping %s from enrichment: word no longer exists", word_id)
            return False
        if word.is_enriched:
            return True

        try:
            details = await self._provider.fetch_details(word.word)
        except ProviderError as e:
            logger.warning("Enrichment failed for %r (%s): %s", word.word, word_id, e)
            return False

        merged = await self._state.merge_enrichment(word_id, details)
        if merged:
            logger.info("Enriched %r (%s)", word.word, word_id)
        return merged
