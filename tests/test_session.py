"""Tests for study sessions with lazy content fetching."""

import asyncio
import random

import pytest

from vocabmaster.enrichment import EnrichmentQueue
from vocabmaster.errors import (
    ConfirmationRequired, EmptyDeck, NoActiveSession, ProviderUnavailable, StorageError, UnknownWord,
)
from vocabmaster.provider import ContentProvider, with_retry
from vocabmaster.schema import AppState
from vocabmaster.session import SessionController, SessionStatus
from vocabmaster.srs import DAY_MS

from conftest import NOW, TODAY, FakeProvider, details_for, make_word, unavailable

IDS = ["seed-1000-0", "seed-1000-1", "seed-1000-2"]


class FlakyProvider(FakeProvider):
    """Fails the first ``failures`` raw calls for one word, behind the real retry policy."""

    def __init__(self, word, failures):
        super().__init__({word: [unavailable(f"flaky {n}") for n in range(failures)]})
        self.attempts = []

    async def fetch_details(self, word):
        async def once():
            self.attempts.append(word)
            return await FakeProvider.fetch_details(self, word)
        return await with_retry(once, attempts=3, delay=0, timeout=5, label=f"details for {word}")


def _session(actor, provider, lookahead=1, page_size=30):
    queue = EnrichmentQueue(actor, provider)
    return SessionController(actor, queue, lookahead=lookahead, page_size=page_size, rng=random.Random(3))


async def _drain(session):
    await asyncio.gather(*session._fetches.values(), return_exceptions=True)


# ───────── lazy start ─────────

async def test_start_does_not_wait_for_content(actor, provider):
    provider.gate = asyncio.Event()
    session = _session(actor, provider)

    session.start(IDS)

    assert session.current_id() == "seed-1000-0"
    assert session.status == SessionStatus.LOADING
    assert not session.current_word().is_enriched

    provider.gate.set()
    await session.reveal()
    assert session.status == SessionStatus.ACTIVE
    await session.close()


async def test_only_current_and_next_card_are_fetched(actor, provider):
    session = _session(actor, provider, lookahead=1)
    session.start(IDS)
    await _drain(session)

    assert provider.calls == ["Abate", "Aberrant"]
    assert not actor.get_word("seed-1000-2").is_enriched

    await session.grade(True)
    await _drain(session)
    assert provider.calls == ["Abate", "Aberrant", "Abscond"]


async def test_reveal_waits_for_content(actor, provider):
    provider.gate = asyncio.Event()
    session = _session(actor, provider)
    session.start(IDS)

    reveal = asyncio.create_task(session.reveal())
    await asyncio.sleep(0)
    assert not reveal.done()

    provider.gate.set()
    word = await reveal
    assert word.definitions[0].definition == "meaning of Abate"
    await session.close()


async def test_enriched_cards_are_not_refetched(actor, provider):
    await actor.merge_enrichment("seed-1000-0", details_for("Abate"))
    session = _session(actor, provider, lookahead=0)
    session.start(IDS)
    await _drain(session)

    assert provider.calls == []
    assert session.status == SessionStatus.ACTIVE


async def test_start_rejects_empty_and_unknown_decks(actor, provider):
    session = _session(actor, provider)
    with pytest.raises(EmptyDeck):
        session.start([])
    with pytest.raises(EmptyDeck):
        session.start(["seed-gone"])
    assert session.status == SessionStatus.IDLE


async def test_duplicate_ids_are_studied_once(actor, provider):
    session = _session(actor, provider)
    session.start(["seed-1000-0", "seed-1000-0", "seed-1000-1"])
    assert session.deck == ["seed-1000-0", "seed-1000-1"]
    await session.close()


# ───────── grading ─────────

async def test_grading_walks_the_deck_to_completion(actor, provider):
    session = _session(actor, provider)
    session.start(IDS)

    for _ in IDS:
        await session.reveal()
        await session.grade(True)

    assert session.status == SessionStatus.COMPLETE
    assert session.reviewed == 3
    assert session.current_id() is None
    assert [actor.get_word(i).leitner_box for i in IDS] == [1, 1, 1]
    assert actor.snapshot().daily_unique_progress == 3
    with pytest.raises(NoActiveSession):
        await session.grade(True)


async def test_card_without_content_can_still_be_graded(actor):
    provider = FakeProvider({"Abate": [unavailable()]})
    session = _session(actor, provider)
    session.start(IDS)

    word = await session.reveal()
    assert word is not None and not word.is_enriched

    result = await session.grade(False)
    assert result.word.leitner_box == 1
    assert session.current_id() == "seed-1000-1"
    await session.close()


async def test_failed_prefetch_is_retried_when_card_becomes_current(actor):
    provider = FakeProvider({"Aberrant": [unavailable()]})
    session = _session(actor, provider)
    session.start(IDS)
    await _drain(session)
    assert not actor.get_word("seed-1000-1").is_enriched

    await session.grade(True)
    await session.reveal()

    assert provider.calls.count("Aberrant") == 2
    assert actor.get_word("seed-1000-1").is_enriched
    await session.close()


async def test_storage_failure_keeps_the_card(actor, store, monkeypatch):
    session = _session(actor, FakeProvider(), lookahead=0)
    session.start(IDS)
    await _drain(session)

    async def broken_save(state):
        raise StorageError("disk full")

    monkeypatch.setattr(store, "save", broken_save)
    with pytest.raises(StorageError):
        await session.grade(True)

    assert session.current_id() == "seed-1000-0"
    assert session.reviewed == 0
    assert actor.get_word("seed-1000-0").leitner_box == 0


async def test_skip_moves_on_without_grading(actor, provider):
    session = _session(actor, provider, lookahead=0)
    session.start(IDS[:2])
    session.skip()
    session.skip()

    assert session.status == SessionStatus.COMPLETE
    assert session.reviewed == 0
    assert actor.get_word("seed-1000-0").leitner_box == 0
    with pytest.raises(NoActiveSession):
        session.skip()
    await session.close()


async def test_three_word_session_recovers_from_flaky_provider(actor):
    provider = FlakyProvider("Aberrant", failures=2)
    session = _session(actor, provider)
    session.start(IDS)

    for _ in IDS:
        await session.reveal()
        await session.grade(True)

    assert provider.attempts.count("Aberrant") == 3
    assert actor.get_word("seed-1000-1").definitions
    assert all(actor.get_word(i).is_enriched for i in IDS)
    assert session.status == SessionStatus.COMPLETE


# ───────── decks ─────────

async def test_review_deck_includes_mastered_words_only_via_revision(actor, provider):
    def setup(draft):
        draft.words[0].leitner_box = 2
        draft.words[0].next_review_date = NOW - 1
        draft.words[1].leitner_box = 5
        draft.words[1].mastered = True
        draft.words[1].next_review_date = NOW - 1
    await actor.mutate(setup)
    session = _session(actor, provider)

    assert session.review_deck() == ["seed-1000-0"]
    assert session.category_deck("mastered") == ["seed-1000-1"]


async def test_mastered_word_missed_in_revision_is_demoted(actor, provider):
    def setup(draft):
        draft.words[1].leitner_box = 5
        draft.words[1].mastered = True
    await actor.mutate(setup)
    session = _session(actor, provider)

    session.start_category("mastered")
    await session.reveal()
    result = await session.grade(False)

    assert result.word.leitner_box == 1
    assert not result.word.mastered
    assert result.word.next_review_date == NOW + DAY_MS
    assert session.category_deck("mastered") == []
    assert session.review_deck() == []


async def test_set_deck_skips_mastered_words(actor, provider):
    def setup(draft):
        draft.words[0].leitner_box = 5
        draft.words[0].mastered = True
    await actor.mutate(setup)
    session = _session(actor, provider, page_size=2)

    assert session.set_deck(0) == ["seed-1000-1"]
    assert session.set_deck(1) == ["seed-1000-2"]
    with pytest.raises(EmptyDeck):
        session.set_deck(2)


async def test_finished_set_needs_confirmation(actor, provider):
    def setup(draft):
        for w in draft.words[:2]:
            w.leitner_box = 5
            w.mastered = True
    await actor.mutate(setup)
    session = _session(actor, provider, page_size=2)

    with pytest.raises(ConfirmationRequired) as exc:
        session.start_set(0)
    assert exc.value.set_index == 0 and exc.value.size == 2
    assert session.status == SessionStatus.IDLE

    session.start_set(0, confirm_full_review=True)
    assert session.deck == ["seed-1000-0", "seed-1000-1"]
    await session.close()


async def test_category_deck_orders(actor, provider):
    await actor.replace(AppState(
        words=[
            make_word("custom-100-aaaaa", "Old", is_custom=True),
            make_word("custom-300-bbbbb", "New", is_custom=True),
            make_word("seed-1000-0", "Abate"),
        ],
        last_login_date=TODAY.isoformat(),
    ))
    session = _session(actor, provider)

    assert session.category_deck("custom", "newest") == ["custom-300-bbbbb", "custom-100-aaaaa"]
    assert session.category_deck("custom", "oldest") == ["custom-100-aaaaa", "custom-300-bbbbb"]
    assert sorted(session.category_deck("new")) == ["custom-100-aaaaa", "custom-300-bbbbb", "seed-1000-0"]
    with pytest.raises(ValueError):
        session.category_deck("everything")


async def test_reset_clears_the_session(actor, provider):
    provider.gate = asyncio.Event()
    session = _session(actor, provider)
    session.start_word("seed-1000-2")
    await session.reset()

    assert session.status == SessionStatus.IDLE
    assert session.view() == {"status": "idle", "index": 0, "total": 0, "reviewed": 0, "card": None}


async def test_view_serializes_current_card(actor, provider):
    session = _session(actor, provider)
    session.start(IDS)
    await session.reveal()
    view = session.view()

    assert view["status"] == "active"
    assert view["total"] == 3
    assert view["card"]["id"] == "seed-1000-0"
    assert view["card"]["leitnerBox"] == 0
    await session.close()


def test_content_provider_is_abstract():
    with pytest.raises(TypeError):
        ContentProvider()


async def test_flaky_provider_gives_up_after_three_attempts():
    provider = FlakyProvider("Abate", failures=3)
    with pytest.raises(ProviderUnavailable):
        await provider.fetch_details("Abate")
    assert provider.attempts == ["Abate"] * 3


async def test_card_deleted_mid_session_is_passed_over(actor, provider):
    session = _session(actor, provider, lookahead=0)
    session.start(IDS[:2])
    await _drain(session)
    await actor.remove_word("seed-1000-0")

    with pytest.raises(UnknownWord):
        await session.grade(True)

    assert session.current_id() == "seed-1000-1"
    assert session.reviewed == 0
    await session.grade(True)
    assert session.status == SessionStatus.COMPLETE
    await session.close()


async def test_restart_keeps_and_closes_earlier_fetches(actor, provider):
    provider.gate = asyncio.Event()
    session = _session(actor, provider, lookahead=0)
    session.start(["seed-1000-0"])
    earlier = session._fetches["seed-1000-0"]

    session.start(["seed-1000-1"])
    assert "seed-1000-0" not in session._fetches
    assert earlier in session._background and not earlier.done()

    await session.close()
    assert earlier.done()
