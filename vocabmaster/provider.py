# vocabmaster/provider.py
from __future__ import annotations

import abc
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import (
    GEMINI_API_BASE, GEMINI_API_KEY, GEMINI_IMAGE_MODEL, GEMINI_TEXT_MODEL,
    PROVIDER_RETRIES, PROVIDER_RETRY_DELAY, PROVIDER_TIMEOUT,
)
from .errors import ParseError, ProviderError, ProviderUnavailable
from .schema import ReadingArticle, SentenceFeedback, WordDetails

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ───────── retry policy ─────────

async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = PROVIDER_RETRIES,
    delay: float = PROVIDER_RETRY_DELAY,
    timeout: Optional[float] = PROVIDER_TIMEOUT,
    label: str = "provider call",
) -> T:
    """Run fn with a per-attempt timeout, retrying ProviderErrors with doubling delay."""
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            if timeout:
                return await asyncio.wait_for(fn(), timeout)
            return await fn()
        except asyncio.TimeoutError as e:
            err: ProviderError = ProviderUnavailable(f"{label} timed out after {timeout}s")
            err.__cause__ = e
        except ProviderError as e:
            err = e

        if attempt == attempts:
            logger.error("%s failed after %d attempts: %s", label, attempts, err)
            raise err
        logger.warning("%s attempt %d/%d failed: %s", label, attempt, attempts, err)
        await asyncio.sleep(delay)
        delay *= 2
    raise AssertionError("unreachable")


# ───────── response sanitizing ─────────

def parse_json_response(text: str, opener: str = "{") -> Any:
    """Pull a JSON object (or array, opener="[") out of model text.

    Models like to wrap JSON in markdown fences or chat around it.
    """
    closer = "}" if opener == "{" else "]"
    clean = text.replace("```json", "").replace("```", "").strip()
    start, end = clean.find(opener), clean.rfind(closer)
    if start != -1 and end > start:
        clean = clean[start:end + 1]
    try:
        return json.loads(clean)
    except json.JSONDecodeError as e:
        raise ParseError(f"Malformed JSON from provider: {e}") from e


def _response_text(data: Any) -> str:
    texts: List[str] = []
    for part in _parts(data):
        t = part.get("text")
        if isinstance(t, str):
            texts.append(t)
    text = "".join(texts).strip()
    if not text:
        raise ParseError("No text in provider response")
    return text


def _inline_image(data: Any) -> Optional[str]:
    for part in _parts(data):
        blob = part.get("inlineData") or part.get("inline_data")
        if isinstance(blob, dict) and blob.get("data"):
            mime = blob.get("mimeType") or blob.get("mime_type") or "image/png"
            return f"data:{mime};base64,{blob['data']}"
    return None


def _parts(data: Any) -> List[Dict[str, Any]]:
    if not isinstance(data, dict):
        raise ParseError("Provider response is not an object")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    return [p for p in parts if isinstance(p, dict)] if isinstance(parts, list) else []


# ───────── interface ─────────

class ContentProvider(abc.ABC):
    """Where enrichment comes from. Untrusted and slow; callers expect ProviderError on failure."""

    @abc.abstractmethod
    async def fetch_details(self, word: str) -> WordDetails:
        ...

    @abc.abstractmethod
    async def fetch_image(self, word: str, prompt_context: str) -> Optional[str]:
        """A data: URI, or None when the model produced no image."""

    @abc.abstractmethod
    async def validate_sentence(self, word: str, sentence: str) -> SentenceFeedback:
        ...

    async def fetch_readings(self) -> List[ReadingArticle]:
        return []

    async def aclose(self) -> None:
        pass


# ───────── Gemini over REST ─────────

DETAILS_PROMPT = """
Give real dictionary data for the GRE word "{word}".
Search reputable dictionaries for its definitions and etymology, and find up to 3 real usage
examples from major publications. Then invent a vivid visual mnemonic for it.
Return ONLY one JSON object, no markdown:
{{
  "definitions": [{{"contextType": "Noun | Verb | ... or a context", "definition": "..."}}],
  "examples": [{{"text": "...", "source": "Publication"}}],
  "synonyms": ["..."],
  "etymology": "...",
  "aiMnemonic": "..."
}}
"""

IMAGE_PROMPT = (
    'A simple, memorable cartoon-style illustration to help remember the word "{word}". '
    "The concept is: {context}. Do not include text in the image."
)

SENTENCE_PROMPT = """
A student preparing for the GRE wrote a sentence using the word "{word}".
Sentence: "{sentence}"
Judge whether the word is used correctly (grammar, sense, nuance).
If not, explain why and give a corrected version. If correct but simple, suggest a richer version.
"""

SENTENCE_SCHEMA = {
    "type": "OBJECT",
    "properties": {"isCorrect": {"type": "BOOLEAN"}, "feedback": {"type": "STRING"}},
    "required": ["isCorrect", "feedback"],
}

READINGS_PROMPT = """
Find 3 real, recent (last month), intellectually demanding articles suitable for GRE reading practice,
from sources like Arts & Letters Daily, The Atlantic, The New Yorker, Scientific American or Smithsonian.
Return ONLY a JSON array of objects with keys "title", "summary" (1-2 sentences), "source", "url".
"""


class GeminiContentProvider(ContentProvider):
    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        api_base: str = GEMINI_API_BASE,
        text_model: str = GEMINI_TEXT_MODEL,
        image_model: str = GEMINI_IMAGE_MODEL,
        retries: int = PROVIDER_RETRIES,
        retry_delay: float = PROVIDER_RETRY_DELAY,
        timeout: float = PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        api_key = api_key or GEMINI_API_KEY
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY is not set")
        self.api_base = api_base.rstrip("/")
        self.text_model = text_model
        self.image_model = image_model
        self.retries = retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._headers = {"accept": "application/json", "x-goog-api-key": api_key}
        self._client = client
        self._owns_client = client is None

    async def _client_or_new(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _http_post(self, path: str, payload: Dict[str, Any]) -> Any:
        client = await self._client_or_new()
        try:
            r = await client.post(f"{self.api_base}{path}", headers=self._headers, json=payload)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(f"Provider returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Provider request failed: {e}") from e
        try:
            return r.json()
        except ValueError as e:
            raise ParseError("Provider response is not JSON") from e

    async def _generate(
        self,
        model: str,
        prompt: str,
        *,
        search: bool = False,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> Any:
        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if search:
            payload["tools"] = [{"google_search": {}}]
        if generation_config:
            payload["generationConfig"] = generation_config
        return await self._http_post(f"/models/{model}:generateContent", payload)

    async def _retry(self, fn: Callable[[], Awaitable[T]], label: str) -> T:
        return await with_retry(
            fn, attempts=self.retries, delay=self.retry_delay, timeout=self.timeout, label=label
        )

    # --- details ---
    async def _fetch_details_once(self, word: str) -> WordDetails:
        data = await self._generate(self.text_model, DETAILS_PROMPT.format(word=word), search=True)
        obj = parse_json_response(_response_text(data))
        if not isinstance(obj, dict):
            raise ParseError("Expected a JSON object of word details")
        try:
            details = WordDetails.model_validate(obj)
        except PydanticValidationError as e:
            raise ParseError(f"Word details failed validation: {e}") from e
        if not details.definitions:
            raise ParseError(f"No definitions returned for {word!r}")
        return details

    async def fetch_details(self, word: str) -> WordDetails:
        return await self._retry(lambda: self._fetch_details_once(word), f"details for {word!r}")

    # --- image ---
    async def fetch_image(self, word: str, prompt_context: str) -> Optional[str]:
        context = prompt_context or f"A visual representation of {word}"

        async def once() -> Optional[str]:
            data = await self._generate(
                self.image_model,
                IMAGE_PROMPT.format(word=word, context=context),
                generation_config={"responseModalities": ["TEXT", "IMAGE"]},
            )
            return _inline_image(data)

        return await self._retry(once, f"image for {word!r}")

    # --- sentence practice ---
    async def validate_sentence(self, word: str, sentence: str) -> SentenceFeedback:
        async def once() -> SentenceFeedback:
            data = await self._generate(
                self.text_model,
                SENTENCE_PROMPT.format(word=word, sentence=sentence),
                generation_config={
                    "responseMimeType": "application/json",
                    "responseSchema": SENTENCE_SCHEMA,
                },
            )
            obj = parse_json_response(_response_text(data))
            try:
                return SentenceFeedback.model_validate(obj)
            except PydanticValidationError as e:
                raise ParseError(f"Sentence feedback failed validation: {e}") from e

        return await self._retry(once, f"sentence check for {word!r}")

    # --- readings ---
    async def fetch_readings(self) -> List[ReadingArticle]:
        async def once() -> List[ReadingArticle]:
            data = await self._generate(self.text_model, READINGS_PROMPT, search=True)
            items = parse_json_response(_response_text(data), opener="[")
            if not isinstance(items, list):
                raise ParseError("Expected a JSON array of articles")
            out: List[ReadingArticle] = []
            for it in items:
                try:
                    out.append(ReadingArticle.model_validate(it))
                except PydanticValidationError:
                    continue
            if not out:
                raise ParseError("No usable articles returned")
            return out

        return await self._retry(once, "daily readings")
