"""Reconciliation of decoded payloads against the record store.

Profiles and ledger entries are upserted by business key. The profile is
all-or-nothing for the submission; ledger entries are best-effort, each one
committed on its own so a bad entry never takes its siblings down with it.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

from pydantic import ValidationError

from portal.errors import RecordRejectedError, StoreUnavailableError
from portal.parsers import ProfileFields, coerce_ledger_entry, describe_validation_error, ledger_key
from portal.storage import AvatarStorage
from portal.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_FIRST_NAME = "Unknown"
DEFAULT_LAST_NAME = "User"


@dataclass(frozen=True)
class PerRecordFailure:
    """A ledger entry that could not be reconciled."""
    key: str
    reason: str


@dataclass
class ReconciliationResult:
    """Outcome of reconciling one submission."""
    profile_processed: bool = False
    profile_key: str | None = None
    ledger_processed: int = 0
    avatar_processed: bool = False
    rerouted: bool = False
    failures: list[PerRecordFailure] = field(default_factory=list)


def _epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def generate_user_id(prefix: str = "user", clock: Callable[[], int] = _epoch_millis) -> str:
    """Timestamp-derived business key for profiles that did not carry one."""
    return f"{prefix}-{clock()}"


def default_profile(clock: Callable[[], int] = _epoch_millis) -> ProfileFields:
    """Placeholder profile used when the user file held transaction data."""
    return ProfileFields(
        user_id=generate_user_id("default-user", clock),
        first_name=DEFAULT_FIRST_NAME,
        last_name=DEFAULT_LAST_NAME,
    )


class RecordReconciler:
    """Upserts profiles and ledger entries through a ``RecordStore``."""

    def __init__(
        self,
        store: RecordStore,
        avatar_storage: AvatarStorage,
        *,
        clock: Callable[[], int] = _epoch_millis,
    ) -> None:
        self.store = store
        self.avatar_storage = avatar_storage
        self.clock = clock

    async def reconcile(
        self,
        profile: ProfileFields,
        entries: Sequence[Any],
        *,
        avatar_path: Path | None = None,
        rerouted: bool = False,
    ) -> ReconciliationResult:
        """Reconcile a full submission.

        Order: profile upsert, avatar attach, then the ledger batch.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
            RecordRejectedError: If the store refuses the profile.
        """
        result = ReconciliationResult(rerouted=rerouted)

        await self.store.ensure_available()

        user_id = await self.upsert_profile(profile)
        result.profile_processed = True
        result.profile_key = user_id

        if avatar_path is not None:
            result.avatar_processed = await self.attach_avatar(user_id, avatar_path)

        await self.upsert_ledger(entries, result)

        logger.info(
            f"Reconciled user {user_id}: {result.ledger_processed} transactions, "
            f"{len(result.failures)} failed, avatar={result.avatar_processed}"
        )
        return result

    async def upsert_profile(self, fields: ProfileFields) -> str:
        """Insert or fully overwrite a profile; returns its business key."""
        user_id = fields.user_id or generate_user_id("user", self.clock)
        values = {
            "first_name": fields.first_name,
            "last_name": fields.last_name,
            "birthday": fields.birthday,
            "country": fields.country,
            "phone": fields.phone,
        }

        try:
            existing = await self.store.find_profile(user_id)
            if existing is not None:
                # avatar is left alone; attach_avatar replaces it when one was staged
                await self.store.update_profile(existing, **values)
                logger.info(f"Updated user {user_id}")
            else:
                await self.store.insert_profile(user_id, **values)
                logger.info(f"Created user {user_id}")
            await self.store.commit()
        except RecordRejectedError:
            await self.store.rollback()
            raise

        return user_id

    async def attach_avatar(self, user_id: str, staged: Path) -> bool:
        """Move the staged image to durable storage and point the profile at it.

        A storage failure is logged and reported as ``False``; the profile keeps
        its previous avatar.
        """
        profile = await self.store.find_profile(user_id)
        if profile is None:
            logger.warning(f"User {user_id} vanished before its avatar could be attached")
            return False

        try:
            reference = await asyncio.to_thread(self.avatar_storage.store, staged)
        except OSError as e:
            logger.warning(f"Could not store avatar for user {user_id}: {e}")
            return False

        try:
            await self.store.update_profile(profile, avatar=reference)
            await self.store.commit()
        except (RecordRejectedError, StoreUnavailableError):
            await self._discard_avatar(reference)
            await self._rollback_quietly()
            raise
        return True

    async def _discard_avatar(self, reference: str) -> None:
        try:
            await asyncio.to_thread(self.avatar_storage.discard, reference)
        except OSError as e:
            logger.warning(f"Could not discard avatar {reference}: {e}")

    async def _rollback_quietly(self) -> None:
        try:
            await self.store.rollback()
        except StoreUnavailableError as e:
            logger.warning(f"Rollback failed: {e}")

    async def upsert_ledger(self, entries: Sequence[Any], result: ReconciliationResult) -> None:
        """Upsert every entry independently, recording failures on ``result``."""
        for index, raw in enumerate(entries):
            key = ledger_key(raw) or f"#{index}"
            try:
                entry = coerce_ledger_entry(raw)
            except ValidationError as e:
                self._record_failure(result, key, describe_validation_error(e))
                continue

            values = {
                "amount": entry.amount,
                "currency": entry.currency,
                "message": entry.message,
                "timestamp": entry.timestamp,
            }
            try:
                existing = await self.store.find_ledger_entry(entry.reference)
                if existing is not None:
                    await self.store.update_ledger_entry(existing, **values)
                else:
                    await self.store.insert_ledger_entry(entry.reference, **values)
                await self.store.commit()
            except RecordRejectedError as e:
                await self.store.rollback()
                self._record_failure(result, entry.reference, e.context.get("reason", e.detail))
                continue

            result.ledger_processed += 1

    @staticmethod
    def _record_failure(result: ReconciliationResult, key: str, reason: str) -> None:
        logger.warning(f"Error processing transaction {key}: {reason}")
        result.failures.append(PerRecordFailure(key=key, reason=reason))
