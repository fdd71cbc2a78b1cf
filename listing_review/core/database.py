"""Async SQLAlchemy engine, session factory and declarative base.

Engines are built by the composition root from explicit settings; nothing
here opens a connection at import time.
"""

from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from listing_review.core.config import Settings
from listing_review.core.errors import ValidationError


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


def build_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.debug,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def as_uuid(value: str | uuid.UUID, field: str = "id") -> uuid.UUID:
    """Parse an identifier coming from the API, queue or pipeline."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid {field}: {value!r}", original_error=e) from e
