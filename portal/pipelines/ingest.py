"""End-to-end ingestion of an uploaded archive.

Stages run strictly in order: validate and extract, locate payload files,
parse them, reconcile against the store. ``SubmissionScope`` wraps the whole
run so the archive and its scratch workspace are gone by the time this
module returns or raises.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import PayloadSettings, Settings, settings
from portal.errors import MalformedPayloadError, PayloadNotFoundError
from portal.parsers import DecodeFailure, LedgerPayload, ParseResult, PayloadKind, decode_payload
from portal.pipelines.cleanup import SubmissionScope
from portal.pipelines.extraction import ArchiveSubmission, extract_archive, validate_submission
from portal.pipelines.locator import (
    AVATAR_ROLE,
    LEDGER_ROLE,
    PROFILE_ROLE,
    FoundPayload,
    LocateResult,
    MissingPayload,
    locate_payload,
)
from portal.pipelines.reconciliation import ReconciliationResult, RecordReconciler, default_profile
from portal.storage import AvatarStorage
from portal.store import RecordStore

logger = logging.getLogger(__name__)

CONTENT_EXCERPT_CHARS = 2000


class SubmissionState(str, Enum):
    """Lifecycle of one submission."""
    RECEIVED = "received"
    EXTRACTED = "extracted"
    LOCATED = "located"
    PARSED = "parsed"
    RECONCILED = "reconciled"
    FAILED = "failed"
    CLEANED_UP = "cleaned_up"


@dataclass
class SubmissionTracker:
    """Records the states a submission passes through."""
    name: str
    states: list[SubmissionState] = field(default_factory=lambda: [SubmissionState.RECEIVED])

    @property
    def current(self) -> SubmissionState:
        return self.states[-1]

    def advance(self, state: SubmissionState) -> None:
        logger.info(f"Submission {self.name}: {self.current.value} -> {state.value}")
        self.states.append(state)


@dataclass
class IngestionOutcome:
    """Reconciliation result plus the lifecycle trail of the submission."""
    result: ReconciliationResult
    states: list[SubmissionState]


@dataclass(frozen=True)
class LocatedPayloads:
    profile: LocateResult
    ledger: LocateResult
    avatar: LocateResult


def locate_payloads(workspace: Path, config: PayloadSettings) -> LocatedPayloads:
    return LocatedPayloads(
        profile=locate_payload(workspace, PROFILE_ROLE, config.profile_filename, config.profile_fallbacks),
        ledger=locate_payload(workspace, LEDGER_ROLE, config.ledger_filename, config.ledger_fallbacks),
        avatar=locate_payload(workspace, AVATAR_ROLE, config.avatar_filename, config.avatar_fallbacks),
    )


def _not_found(missing: MissingPayload) -> PayloadNotFoundError:
    return PayloadNotFoundError(
        f"{missing.tried[0]} not found in ZIP file. "
        f"Available files: {', '.join(missing.available) or '(none)'}",
        context={
            "role": missing.role,
            "tried": list(missing.tried),
            "available_files": list(missing.available),
        },
    )


def _malformed(found: FoundPayload, failure: DecodeFailure) -> MalformedPayloadError:
    logger.error(f"Malformed {found.matched_name}: {failure.message}")
    logger.debug(f"File content: {failure.content}")
    return MalformedPayloadError(
        f"{failure.message} in {found.matched_name}. Please check the file format.",
        context={
            "role": found.role,
            "file": found.matched_name,
            "message": failure.message,
            "line": failure.line,
            "column": failure.column,
            "content": failure.content[:CONTENT_EXCERPT_CHARS],
        },
    )


async def _read_payload(found: FoundPayload, kind: PayloadKind) -> ParseResult:
    raw = await asyncio.to_thread(found.path.read_bytes)
    return decode_payload(raw, kind)


async def ingest_submission(
    submission: ArchiveSubmission,
    session: AsyncSession,
    *,
    config: Settings | None = None,
    avatar_storage: AvatarStorage | None = None,
) -> IngestionOutcome:
    """Run the full pipeline for one uploaded archive.

    Args:
        submission: The archive, already written to disk.
        session: Database session for the store.
        config: Settings; defaults to the application settings.
        avatar_storage: Blob sink for avatars; defaults to the media directory.

    Returns:
        IngestionOutcome with the reconciliation result.

    Raises:
        IngestionError: Any abort (validation, corrupt archive, missing or
            malformed payload, store failure). Cleanup has run by then.
    """
    config = config or settings
    avatar_storage = avatar_storage or AvatarStorage(config.uploads.media_dir)
    tracker = SubmissionTracker(name=submission.filename)

    try:
        async with SubmissionScope(submission.path) as scope:
            try:
                validate_submission(submission.media_type, submission.size, config.uploads)

                workspace = await asyncio.to_thread(scope.create_workspace, config.uploads.scratch_dir)
                await asyncio.to_thread(
                    extract_archive,
                    submission.path,
                    workspace,
                    max_extracted_bytes=config.uploads.max_extracted_bytes,
                )
                tracker.advance(SubmissionState.EXTRACTED)

                located = await asyncio.to_thread(locate_payloads, workspace, config.payloads)
                if isinstance(located.profile, MissingPayload):
                    raise _not_found(located.profile)

                # the profile file decides whether a ledger file is needed at all
                parsed = await _read_payload(located.profile, PayloadKind.PROFILE)
                if isinstance(parsed, DecodeFailure):
                    raise _malformed(located.profile, parsed)
                rerouted = isinstance(parsed, LedgerPayload)
                if not rerouted and isinstance(located.ledger, MissingPayload):
                    raise _not_found(located.ledger)
                tracker.advance(SubmissionState.LOCATED)

                if rerouted:
                    profile = default_profile()
                    ledger = parsed
                else:
                    profile = parsed.fields
                    ledger = await _read_payload(located.ledger, PayloadKind.LEDGER)
                    if isinstance(ledger, DecodeFailure):
                        raise _malformed(located.ledger, ledger)
                tracker.advance(SubmissionState.PARSED)

                avatar_path = located.avatar.path if isinstance(located.avatar, FoundPayload) else None
                reconciler = RecordReconciler(RecordStore(session, config.store), avatar_storage)
                result = await reconciler.reconcile(
                    profile,
                    ledger.entries,
                    avatar_path=avatar_path,
                    rerouted=ledger.rerouted,
                )
                tracker.advance(SubmissionState.RECONCILED)
            except Exception as e:
                logger.error(f"Submission {submission.filename} failed after {tracker.current.value}: {e}")
                tracker.advance(SubmissionState.FAILED)
                raise
    finally:
        tracker.advance(SubmissionState.CLEANED_UP)

    return IngestionOutcome(result=result, states=tracker.states)
