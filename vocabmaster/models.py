# vocabmaster/models.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base

ROOT_KEY = "root"
SCHEMA_VERSION = 1


class AppStateDocument(Base):
    """The whole application state, stored as one JSON document under a fixed key."""
    __tablename__ = "app_state_document"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=SCHEMA_VERSION)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
