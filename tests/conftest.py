"""Shared test fixtures."""

import asyncio
from datetime import date
from typing import Dict, List, Optional

import pytest

from vocabmaster.db import create_schema, make_engine, make_sessionmaker
from vocabmaster.errors import ProviderUnavailable
from vocabmaster.provider import ContentProvider
from vocabmaster.schema import AppState, SentenceFeedback, WordDetails, WordItem
from vocabmaster.state import AppStateActor
from vocabmaster.store import PersistentStore

NOW = 1_760_000_000_000  # fixed "now" in epoch ms
TODAY = date(2026, 10, 18)


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


def details_for(word: str) -> WordDetails:
    return WordDetails(
        definitions=[{"contextType": "Adjective", "definition": f"meaning of {word}"}],
        examples=[{"text": f"A sentence with {word}.", "source": "The Atlantic"}],
        synonyms=[f"{word}-like"],
        etymology=f"From Latin {word.lower()}us",
        ai_mnemonic=f"Picture a giant {word}",
    )


class FakeProvider(ContentProvider):
    """Scripted provider. ``script`` maps a headword to outcomes consumed in order
    (WordDetails or an exception instance); unscripted words succeed."""

    def __init__(self, script: Optional[Dict[str, list]] = None):
        self.script = {k.lower(): list(v) for k, v in (script or {}).items()}
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.active = 0
        self.max_active = 0

    async def fetch_details(self, word: str) -> WordDetails:
        self.calls.append(word)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            outcomes = self.script.get(word.lower())
            outcome = outcomes.pop(0) if outcomes else details_for(word)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.active -= 1

    async def fetch_image(self, word: str, prompt_context: str) -> Optional[str]:
        self.calls.append(f"image:{word}")
        return "data:image/png;base64,iVBORw0KGgo="

    async def validate_sentence(self, word: str, sentence: str) -> SentenceFeedback:
        if word.lower() in sentence.lower():
            return SentenceFeedback(is_correct=True, feedback="Well used.")
        return SentenceFeedback(is_correct=False, feedback=f"The sentence does not use {word}.")


def make_word(word_id: str, word: str, **fields) -> WordItem:
    return WordItem(id=word_id, word=word, **fields)


def unavailable(msg: str = "boom") -> ProviderUnavailable:
    return ProviderUnavailable(msg)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    """aiosqlite engine on a temporary file with the schema created."""
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'vocab.db'}")
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def store(engine, clock):
    return PersistentStore(make_sessionmaker(engine), clock=clock)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
async def actor(store, clock):
    """Opened state actor holding a small, known word list instead of the seed list."""
    a = AppStateActor(store, clock=clock, today=lambda: TODAY)
    await a.open()
    await a.replace(AppState(
        words=[
            make_word("seed-1000-0", "Abate"),
            make_word("seed-1000-1", "Aberrant"),
            make_word("seed-1000-2", "Abscond"),
        ],
        streak=1,
        last_login_date=TODAY.isoformat(),
    ))
    return a
