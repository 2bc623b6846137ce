"""Keyed record store over an async SQLAlchemy session.

Exposes find / insert / update by business key. Connectivity problems are
translated to ``StoreUnavailableError`` and constraint or data errors to
``RecordRejectedError``, so callers never match on driver exceptions.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import select, text
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from . import models
from .config import StoreSettings, settings
from .errors import RecordRejectedError, StoreUnavailableError

logger = logging.getLogger(__name__)

_UNAVAILABLE = (OperationalError, InterfaceError, ConnectionError, TimeoutError)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate driver exceptions raised inside the block."""
    try:
        yield
    except _UNAVAILABLE as e:
        logger.error(f"Store unavailable during {operation}: {e}")
        raise StoreUnavailableError(
            "Database not available",
            context={"operation": operation},
        ) from e
    except SQLAlchemyError as e:
        raise RecordRejectedError(
            f"Store rejected {operation}: {e.__class__.__name__}",
            context={"operation": operation, "reason": str(getattr(e, "orig", e))},
        ) from e


class RecordStore:
    """Find/insert/update access to profiles and ledger entries."""

    def __init__(self, session: AsyncSession, config: StoreSettings | None = None) -> None:
        self.session = session
        self.config = config or settings.store

    async def ensure_available(self) -> None:
        """Probe the store, retrying with exponential backoff.

        Raises:
            StoreUnavailableError: If every attempt failed.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_exponential(multiplier=self.config.retry_wait_seconds, max=10),
            retry=retry_if_exception_type(_UNAVAILABLE),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        with store_errors("availability check"):
            async for attempt in retrying:
                with attempt:
                    try:
                        await self.session.execute(text("SELECT 1"))
                    except _UNAVAILABLE:
                        await self.session.rollback()
                        raise

    async def commit(self) -> None:
        with store_errors("commit"):
            await self.session.commit()

    async def rollback(self) -> None:
        with store_errors("rollback"):
            await self.session.rollback()

    # Profiles

    async def find_profile(self, user_id: str) -> models.Profile | None:
        with store_errors(f"lookup of user {user_id}"):
            result = await self.session.execute(
                select(models.Profile).where(models.Profile.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def insert_profile(self, user_id: str, **fields: Any) -> models.Profile:
        profile = models.Profile(user_id=user_id, **fields)
        with store_errors(f"insert of user {user_id}"):
            self.session.add(profile)
            await self.session.flush()
        return profile

    async def update_profile(self, profile: models.Profile, **fields: Any) -> models.Profile:
        for name, value in fields.items():
            setattr(profile, name, value)
        with store_errors(f"update of user {profile.user_id}"):
            await self.session.flush()
        return profile

    async def list_profiles(self) -> list[models.Profile]:
        with store_errors("profile listing"):
            result = await self.session.execute(select(models.Profile).order_by(models.Profile.id))
            return list(result.scalars().all())

    # Ledger entries

    async def find_ledger_entry(self, reference: str) -> models.LedgerEntry | None:
        with store_errors(f"lookup of transaction {reference}"):
            result = await self.session.execute(
                select(models.LedgerEntry).where(models.LedgerEntry.reference == reference)
            )
            return result.scalar_one_or_none()

    async def insert_ledger_entry(self, reference: str, **fields: Any) -> models.LedgerEntry:
        entry = models.LedgerEntry(reference=reference, **fields)
        with store_errors(f"insert of transaction {reference}"):
            self.session.add(entry)
            await self.session.flush()
        return entry

    async def update_ledger_entry(self, entry: models.LedgerEntry, **fields: Any) -> models.LedgerEntry:
        for name, value in fields.items():
            setattr(entry, name, value)
        with store_errors(f"update of transaction {entry.reference}"):
            await self.session.flush()
        return entry

    async def list_ledger_entries(self) -> list[models.LedgerEntry]:
        with store_errors("transaction listing"):
            result = await self.session.execute(
                select(models.LedgerEntry).order_by(models.LedgerEntry.timestamp.desc())
            )
            return list(result.scalars().all())
