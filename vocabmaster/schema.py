# vocabmaster/schema.py
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Annotated, Any, List, Optional

from pydantic import (
    AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator,
)
from pydantic.alias_generators import to_camel

SEED_PREFIX = "seed-"
CUSTOM_PREFIX = "custom-"
MAX_BOX = 5

_ID_TS = re.compile(r"^(?:seed|custom)-(\d+)")


class Document(BaseModel):
    """camelCase on the wire (matches exported backups), snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Definition(Document):
    context_type: str = ""
    definition: str


class Example(Document):
    text: str
    source: str = ""


def _clean_definitions(v: Any) -> Any:
    if not isinstance(v, list):
        return v
    out = []
    for d in v:
        if isinstance(d, str) and d.strip():
            out.append({"definition": d.strip()})
        elif isinstance(d, dict):
            text = str(d.get("definition") or "").strip()
            if text:
                ctx = d.get("contextType", d.get("context_type")) or ""
                out.append({"contextType": str(ctx).strip(), "definition": text})
        elif isinstance(d, Definition) and d.definition.strip():
            out.append(d)
    return out


def _clean_examples(v: Any) -> Any:
    if not isinstance(v, list):
        return v
    out = []
    for e in v:
        if isinstance(e, str) and e.strip():
            out.append({"text": e.strip()})
        elif isinstance(e, dict):
            text = str(e.get("text") or "").strip()
            if text:
                out.append({"text": text, "source": str(e.get("source") or "").strip()})
        elif isinstance(e, Example) and e.text.strip():
            out.append(e)
    return out


def _clean_strings(v: Any) -> Any:
    if not isinstance(v, list):
        return v
    seen, out = set(), []
    for s in v:
        if not isinstance(s, str):
            continue
        t = s.strip()
        if t and t.lower() not in seen:
            seen.add(t.lower())
            out.append(t)
    return out


DefinitionList = Annotated[List[Definition], BeforeValidator(_clean_definitions)]
ExampleList = Annotated[List[Example], BeforeValidator(_clean_examples)]
StringList = Annotated[List[str], BeforeValidator(_clean_strings)]


class WordDetails(Document):
    """Content fields returned by the provider. Blank entries are dropped."""
    definitions: DefinitionList = Field(default_factory=list)
    examples: ExampleList = Field(default_factory=list)
    synonyms: StringList = Field(default_factory=list)
    etymology: str = ""
    ai_mnemonic: str = ""

    @field_validator("etymology", "ai_mnemonic", mode="before")
    @classmethod
    def text_or_empty(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""


class WordItem(Document):
    id: str
    word: str
    definitions: DefinitionList = Field(default_factory=list)
    examples: ExampleList = Field(default_factory=list)
    synonyms: StringList = Field(default_factory=list)
    etymology: str = ""
    ai_mnemonic: str = ""
    user_mnemonic: Optional[str] = None
    # older backups call this aiImageUrl
    image_ref: Optional[str] = Field(
        default=None, serialization_alias="imageRef",
        validation_alias=AliasChoices("imageRef", "aiImageUrl", "image_ref")
    )
    is_custom: bool = False

    leitner_box: int = Field(default=0, ge=0, le=MAX_BOX)
    next_review_date: int = 0   # epoch ms, only meaningful when leitner_box > 0
    mastered: bool = False
    last_review: Optional[int] = None

    @field_validator("etymology", "ai_mnemonic", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("next_review_date", "last_review", mode="before")
    @classmethod
    def whole_ms(cls, v: Any) -> Any:
        return int(v) if isinstance(v, float) else v

    @model_validator(mode="after")
    def mastered_needs_top_box(self) -> "WordItem":
        if self.mastered and self.leitner_box < MAX_BOX:
            raise ValueError(f"{self.id}: mastered words must be in box {MAX_BOX}")
        return self

    @property
    def is_enriched(self) -> bool:
        return bool(self.definitions)

    @property
    def is_course(self) -> bool:
        return self.id.startswith(SEED_PREFIX)

    @property
    def is_custom_word(self) -> bool:
        return self.is_custom or self.id.startswith(CUSTOM_PREFIX)

    @property
    def created_at(self) -> int:
        """Creation time in epoch ms, taken from the id; 0 when the id has none."""
        m = _ID_TS.match(self.id)
        return int(m.group(1)) if m else 0

    def created_datetime(self) -> Optional[datetime]:
        ts = self.created_at
        return datetime.fromtimestamp(ts / 1000, tz=timezone.utc) if ts else None


class AppState(Document):
    words: List[WordItem] = Field(default_factory=list)
    streak: int = Field(default=0, ge=0)
    last_login_date: str = ""
    daily_goal: int = Field(default=20, ge=1)
    daily_progress: int = Field(default=0, ge=0)
    daily_unique_progress: int = Field(default=0, ge=0)
    dark_mode: bool = False

    @field_validator("words")
    @classmethod
    def unique_ids(cls, words: List[WordItem]) -> List[WordItem]:
        seen = set()
        for w in words:
            if w.id in seen:
                raise ValueError(f"duplicate word id: {w.id}")
            seen.add(w.id)
        return words

    def index_of(self, word_id: str) -> int:
        for i, w in enumerate(self.words):
            if w.id == word_id:
                return i
        return -1

    def get_word(self, word_id: str) -> Optional[WordItem]:
        i = self.index_of(word_id)
        return self.words[i] if i >= 0 else None

    def find_by_headword(self, word: str) -> Optional[WordItem]:
        key = word.strip().lower()
        for w in self.words:
            if w.word.lower() == key:
                return w
        return None

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SentenceFeedback(Document):
    is_correct: bool
    feedback: str


class ReadingArticle(Document):
    title: str
    summary: str = ""
    source: str = ""
    url: str = ""
