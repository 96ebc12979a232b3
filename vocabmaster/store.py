# vocabmaster/store.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .errors import StorageError
from .models import ROOT_KEY, SCHEMA_VERSION, AppStateDocument
from .schema import AppState
from .seed import default_state

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class PersistentStore:
    """Atomic get/put of the whole AppState document under one constant key."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker,
        key: str = ROOT_KEY,
        clock: Callable[[], int] = now_ms,
    ):
        self._sessionmaker = sessionmaker
        self.key = key
        self._clock = clock

    async def _read(self) -> Optional[AppStateDocument]:
        async with self._sessionmaker() as db:
            res = await db.execute(select(AppStateDocument).where(AppStateDocument.key == self.key))
            return res.scalar_one_or_none()

    async def load(self) -> AppState:
        """Return the stored document, seeding (and saving) a default one on first run."""
        try:
            row = await self._read()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read state: {e}") from e

        if row is None:
            state = default_state(self._clock())
            logger.info("No stored state under %r; seeded %d words", self.key, len(state.words))
            await self.save(state)
            return state

        if row.version > SCHEMA_VERSION:
            raise StorageError(f"Stored state has schema version {row.version}, newer than {SCHEMA_VERSION}")
        try:
            return AppState.model_validate(row.document)
        except PydanticValidationError as e:
            raise StorageError(f"Stored state is corrupt: {e}") from e

    async def save(self, state: AppState) -> None:
        """Replace the whole document in one transaction. Returns only once committed."""
        document = state.to_document()
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    res = await db.execute(
                        select(AppStateDocument).where(AppStateDocument.key == self.key)
                    )
                    row = res.scalar_one_or_none()
                    if row is None:
                        db.add(AppStateDocument(key=self.key, version=SCHEMA_VERSION, document=document))
                    else:
                        row.document = document
                        row.version = SCHEMA_VERSION
        except SQLAlchemyError as e:
            logger.exception("Saving state under %r failed", self.key)
            raise StorageError(f"Could not save state: {e}") from e
