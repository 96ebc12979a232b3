# vocabmaster/main.py
from __future__ import annotations

import logging
import random
from datetime import date
from typing import Callable, List, Literal, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import (
    ENRICH_CONCURRENCY, ENRICH_MAX_REQUEUES, SESSION_LOOKAHEAD, WORDS_PER_SET, configure_logging,
)
from .db import create_schema, make_engine, make_sessionmaker, ping
from .enrichment import EnrichmentQueue
from .errors import (
    ConfirmationRequired, EmptyDeck, NoActiveSession, ProviderError, StorageError, UnknownWord,
    ValidationError,
)
from .provider import ContentProvider, GeminiContentProvider
from .schema import Document, ReadingArticle, SentenceFeedback
from .session import SessionController
from .srs import deck_stats, filter_library
from .state import AppStateActor, today_in_tz
from .store import PersistentStore, now_ms
from .transfer import export_document, export_filename, parse_import

logger = logging.getLogger(__name__)

SENTENCE_FALLBACK = "Could not validate sentence at this time."
READINGS_FALLBACK = ReadingArticle(
    title="Error fetching recent articles",
    summary="We couldn't retrieve the latest articles right now. Please try again later.",
    source="System",
    url="https://www.aldaily.com/",
)


# ───────── Runtime (everything one process owns) ─────────
class Runtime:
    def __init__(
        self,
        store: PersistentStore,
        provider: ContentProvider,
        *,
        engine: Optional[AsyncEngine] = None,
        clock: Callable[[], int] = now_ms,
        today: Callable[[], date] = today_in_tz,
        concurrency: int = ENRICH_CONCURRENCY,
        max_requeues: int = ENRICH_MAX_REQUEUES,
        lookahead: int = SESSION_LOOKAHEAD,
        page_size: int = WORDS_PER_SET,
        rng: Optional[random.Random] = None,
    ):
        self.engine = engine
        self.provider = provider
        self.today = today
        self.page_size = page_size
        self.state = AppStateActor(store, clock=clock, today=today)
        self.queue = EnrichmentQueue(self.state, provider, concurrency=concurrency, max_requeues=max_requeues)
        self.session = SessionController(self.state, self.queue, lookahead=lookahead, page_size=page_size, rng=rng)

    async def start(self) -> None:
        if self.engine is not None:
            await create_schema(self.engine)
        await self.state.open()
        self.queue.start()

    async def close(self) -> None:
        await self.session.close()
        await self.queue.close()
        await self.provider.aclose()
        if self.engine is not None:
            await self.engine.dispose()


async def build_runtime() -> Runtime:
    engine = make_engine()
    await ping(engine)
    store = PersistentStore(make_sessionmaker(engine))
    return Runtime(store, GeminiContentProvider(), engine=engine)


# ───────── App ─────────
app = FastAPI(title="VocabMaster API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


# ───────── Pydantic models ─────────
class AddWordsIn(Document):
    text: str
    fetch_immediately: bool = False


class AddWordsOut(Document):
    ids: List[str]
    created: int
    updated: int
    fetched: int
    queued: int


class MnemonicIn(Document):
    mnemonic: Optional[str] = None


class SentenceIn(Document):
    sentence: str


class StartSessionIn(Document):
    deck: Literal["review", "set", "category", "word"]
    set_index: int = 0
    confirm_full_review: bool = False
    category: Literal["mastered", "learning", "custom", "new"] = "learning"
    order: Literal["random", "newest", "oldest"] = "random"
    word_id: Optional[str] = None


class GradeIn(Document):
    correct: bool


class SettingsIn(Document):
    dark_mode: Optional[bool] = None
    daily_goal: Optional[int] = None


# ───────── Error mapping ─────────
@app.exception_handler(StorageError)
async def storage_error(_: Request, e: StorageError):
    return JSONResponse(status_code=503, content={"detail": f"Storage failure: {e}"})


@app.exception_handler(ValidationError)
async def validation_error(_: Request, e: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(e)})


@app.exception_handler(UnknownWord)
async def unknown_word(_: Request, e: UnknownWord):
    return JSONResponse(status_code=404, content={"detail": str(e)})


@app.exception_handler(EmptyDeck)
async def empty_deck(_: Request, e: EmptyDeck):
    return JSONResponse(status_code=400, content={"detail": str(e)})


@app.exception_handler(ConfirmationRequired)
async def confirmation_required(_: Request, e: ConfirmationRequired):
    return JSONResponse(
        status_code=409,
        content={"detail": str(e), "setIndex": e.set_index, "size": e.size, "confirmWith": "confirmFullReview"},
    )


@app.exception_handler(NoActiveSession)
async def no_active_session(_: Request, e: NoActiveSession):
    return JSONResponse(status_code=409, content={"detail": str(e)})


# ───────── Lifecycle ─────────
@app.on_event("startup")
async def on_startup():
    configure_logging()
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = await build_runtime()
    await app.state.runtime.start()


@app.on_event("shutdown")
async def on_shutdown():
    await app.state.runtime.close()


@app.get("/healthz")
async def healthz():
    return {"ok": True}


# ───────── State / dashboard ─────────
@app.get("/state")
async def get_state(rt: Runtime = Depends(get_runtime)):
    state = await rt.state.check_day()
    return state.to_document()


@app.get("/dashboard")
async def dashboard(rt: Runtime = Depends(get_runtime)):
    state = await rt.state.check_day()
    stats = deck_stats(state.words, rt.state.now(), rt.page_size)
    return {
        "streak": state.streak,
        "dailyGoal": state.daily_goal,
        "dailyProgress": state.daily_progress,
        "dailyUniqueProgress": state.daily_unique_progress,
        "darkMode": state.dark_mode,
        "enrichment": {"pending": len(rt.queue.pending), "inFlight": len(rt.queue.in_flight)},
        **stats,
    }


@app.put("/settings")
async def update_settings(body: SettingsIn, rt: Runtime = Depends(get_runtime)):
    if body.daily_goal is not None and body.daily_goal < 1:
        raise HTTPException(status_code=400, detail="dailyGoal must be >= 1")
    state = await rt.state.update_settings(dark_mode=body.dark_mode, daily_goal=body.daily_goal)
    return {"darkMode": state.dark_mode, "dailyGoal": state.daily_goal}


# ───────── Library ─────────
@app.get("/words")
async def list_words(
    search: str = Query("", description="Case-insensitive headword substring"),
    kind: Literal["all", "mastered", "learning", "new", "custom"] = Query("all", alias="filter"),
    rt: Runtime = Depends(get_runtime),
):
    words = filter_library(rt.state.snapshot().words, search, kind)
    return {"count": len(words), "items": [w.model_dump(mode="json", by_alias=True) for w in words]}


@app.post("/words", response_model=AddWordsOut, response_model_by_alias=True)
async def add_words(body: AddWordsIn, rt: Runtime = Depends(get_runtime)):
    result = await rt.state.add_custom_words(body.text)
    fetched = queued = 0
    if body.fetch_immediately:
        for word_id in result.ids:
            word = rt.state.get_word(word_id)
            if word is None or word.is_enriched:
                continue
            if await rt.queue.ensure(word_id):
                fetched += 1
            else:
                logger.warning("Could not fetch %r immediately; it will be retried later", word.word)
    else:
        queued = rt.queue.enqueue(result.ids)
    return AddWordsOut(
        ids=result.ids, created=result.created, updated=result.updated, fetched=fetched, queued=queued
    )


@app.delete("/words/{word_id}", status_code=204)
async def delete_word(word_id: str, rt: Runtime = Depends(get_runtime)):
    await rt.state.remove_word(word_id)


@app.put("/words/{word_id}/mnemonic")
async def set_mnemonic(word_id: str, body: MnemonicIn, rt: Runtime = Depends(get_runtime)):
    word = await rt.state.set_user_mnemonic(word_id, body.mnemonic)
    return word.model_dump(mode="json", by_alias=True)


@app.post("/words/{word_id}/image")
async def generate_image(word_id: str, rt: Runtime = Depends(get_runtime)):
    word = rt.state.get_word(word_id)
    if word is None:
        raise UnknownWord(word_id)
    context = word.user_mnemonic or word.ai_mnemonic or f"A visual mnemonic for {word.word}"
    try:
        image_ref = await rt.provider.fetch_image(word.word, context)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=f"Image generation failed: {e}")
    if image_ref:
        await rt.state.merge_image(word_id, image_ref)
    return {"id": word_id, "imageRef": image_ref}


@app.post("/words/{word_id}/sentence", response_model=SentenceFeedback, response_model_by_alias=True)
async def check_sentence(word_id: str, body: SentenceIn, rt: Runtime = Depends(get_runtime)):
    word = rt.state.get_word(word_id)
    if word is None:
        raise UnknownWord(word_id)
    try:
        return await rt.provider.validate_sentence(word.word, body.sentence)
    except ProviderError as e:
        logger.warning("Sentence check for %r failed: %s", word.word, e)
        return SentenceFeedback(is_correct=False, feedback=SENTENCE_FALLBACK)


# ───────── Study sessions ─────────
@app.post("/sessions")
async def start_session(body: StartSessionIn, rt: Runtime = Depends(get_runtime)):
    s = rt.session
    if body.deck == "review":
        s.start_review()
    elif body.deck == "set":
        if body.set_index < 0:
            raise HTTPException(status_code=400, detail="setIndex must be >= 0")
        s.start_set(body.set_index, body.confirm_full_review)
    elif body.deck == "category":
        s.start_category(body.category, body.order)
    else:
        if not body.word_id:
            raise HTTPException(status_code=400, detail="wordId is required for a single-word session")
        if rt.state.get_word(body.word_id) is None:
            raise UnknownWord(body.word_id)
        s.start_word(body.word_id)
    return s.view()


@app.get("/sessions/current")
async def current_session(rt: Runtime = Depends(get_runtime)):
    return rt.session.view()


@app.post("/sessions/current/reveal")
async def reveal_card(rt: Runtime = Depends(get_runtime)):
    await rt.session.reveal()
    return rt.session.view()


@app.post("/sessions/current/grade")
async def grade_card(body: GradeIn, rt: Runtime = Depends(get_runtime)):
    result = await rt.session.grade(body.correct)
    return {
        "graded": result.word.model_dump(mode="json", by_alias=True),
        "firstExposure": result.first_exposure,
        "session": rt.session.view(),
    }


@app.post("/sessions/current/skip")
async def skip_card(rt: Runtime = Depends(get_runtime)):
    rt.session.skip()
    return rt.session.view()


# ───────── Backup ─────────
@app.get("/export")
async def export_state(rt: Runtime = Depends(get_runtime)):
    filename = export_filename(rt.today())
    return JSONResponse(
        content=export_document(rt.state.snapshot()),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/import")
async def import_state(
    document: dict = Body(...),
    confirm: bool = Query(False, description="Replace the current state; otherwise only validate"),
    rt: Runtime = Depends(get_runtime),
):
    state = parse_import(document)
    if not confirm:
        return {"valid": True, "words": len(state.words), "replaced": False}
    await rt.session.reset()
    await rt.state.replace(state)
    return {"valid": True, "words": len(state.words), "replaced": True}


# ───────── Reading ─────────
@app.get("/readings")
async def readings(rt: Runtime = Depends(get_runtime)):
    try:
        articles = await rt.provider.fetch_readings()
    except ProviderError as e:
        logger.warning("Daily readings unavailable: %s", e)
        articles = [READINGS_FALLBACK]
    return [a.model_dump(by_alias=True) for a in articles]
