"""FastAPI app with health, archive upload, and lookup endpoints.

The upload endpoint hands the archive to the ingestion pipeline and reports
what was reconciled; every pipeline abort maps to a JSON error response.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, BinaryIO

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings, settings
from .db import get_session
from .errors import IngestionError, InputValidationError
from .logging_config import setup_logging
from .pipelines.cleanup import workspace_name
from .pipelines.extraction import ArchiveSubmission, validate_submission
from .pipelines.ingest import ingest_submission
from .store import RecordStore

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_BYTES = 1024 * 1024


# Pydantic response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None
    context: dict[str, Any] | None = None


class RecordFailureDTO(BaseModel):
    """Ledger entry that could not be reconciled."""
    key: str
    reason: str


class UploadArchiveResponse(BaseModel):
    """Archive upload response."""
    status: str
    message: str
    profile_processed: bool
    profile_key: str | None = None
    ledger_processed: int
    avatar_processed: bool
    rerouted: bool = False
    failures: list[RecordFailureDTO] = Field(default_factory=list)


class ProfileDTO(BaseModel):
    """Stored profile."""
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    first_name: str
    last_name: str
    birthday: date | None = None
    country: str | None = None
    phone: str | None = None
    avatar: str | None = None
    updated_at: datetime


class LedgerEntryDTO(BaseModel):
    """Stored ledger entry."""
    model_config = ConfigDict(from_attributes=True)

    reference: str
    amount: Decimal
    currency: str | None = None
    message: str | None = None
    timestamp: datetime
    updated_at: datetime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title="ZIP Portal",
    version=settings.version,
    description="Archive upload and reconciliation of user profiles and transactions",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Stored avatars
app.mount(
    "/uploads",
    StaticFiles(directory=settings.uploads.media_dir, check_dir=False),
    name="uploads",
)


# Exception handlers
@app.exception_handler(IngestionError)
async def ingestion_error_handler(request, exc: IngestionError):
    """Handle every pipeline abort."""
    logger.error(f"Ingestion error ({exc.code}): {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.code,
            detail=exc.detail,
            context=exc.context or None,
        ).model_dump(mode="json"),
    )


def _write_upload(source: BinaryIO, target: Path) -> int:
    with target.open("wb") as out:
        shutil.copyfileobj(source, out, UPLOAD_CHUNK_BYTES)
    return target.stat().st_size


async def persist_upload(file: UploadFile, upload_dir: Path) -> Path:
    """Copy the uploaded archive into ``upload_dir``; the pipeline owns it afterwards."""
    upload_dir.mkdir(parents=True, exist_ok=True)
    safe_name = Path(file.filename or "archive.zip").name
    target = upload_dir / f"{workspace_name()}-{safe_name}"
    try:
        await asyncio.to_thread(_write_upload, file.file, target)
    except OSError:
        target.unlink(missing_ok=True)
        raise
    return target


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=settings.version,
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "upload": "/api/upload",
            "users": "/api/users",
            "transactions": "/api/transactions",
            "avatars": "/uploads/{avatar}",
            "docs": "/docs",
        },
    }


@app.post(
    "/api/upload",
    response_model=UploadArchiveResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def upload_archive(
    zip_file: UploadFile | None = File(default=None, alias="zipFile", description="ZIP archive"),
    session: AsyncSession = Depends(get_session),
    config: Settings = Depends(get_settings),
) -> UploadArchiveResponse:
    """Upload a ZIP archive and reconcile its contents.

    This endpoint:
    1. Rejects oversized or non-ZIP uploads before touching the disk
    2. Extracts the archive into a scratch workspace
    3. Locates and parses the user and transaction files
    4. Upserts the user, its avatar, and every transaction
    5. Removes the archive and workspace

    Returns:
        UploadArchiveResponse with processed counts and per-transaction failures
    """
    if zip_file is None:
        raise InputValidationError("No ZIP file uploaded", context={"field": "zipFile"})

    try:
        validate_submission(zip_file.content_type, zip_file.size, config.uploads)

        logger.info(f"Received archive upload: {zip_file.filename}")
        archive_path = await persist_upload(zip_file, config.uploads.upload_dir)
        submission = ArchiveSubmission(
            path=archive_path,
            filename=zip_file.filename or archive_path.name,
            media_type=zip_file.content_type,
            size=archive_path.stat().st_size,
        )

        outcome = await ingest_submission(submission, session, config=config)
        result = outcome.result

        message = "ZIP file processed successfully"
        if result.rerouted:
            message += " (user data file contained transaction data)"

        return UploadArchiveResponse(
            status="success",
            message=message,
            profile_processed=result.profile_processed,
            profile_key=result.profile_key,
            ledger_processed=result.ledger_processed,
            avatar_processed=result.avatar_processed,
            rerouted=result.rerouted,
            failures=[RecordFailureDTO(key=f.key, reason=f.reason) for f in result.failures],
        )

    except IngestionError:
        # Re-raise to be caught by exception handlers
        raise
    except Exception as e:
        logger.error(f"Unexpected error processing archive: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {str(e)}",
        )
    finally:
        await zip_file.close()


@app.get("/api/users", response_model=list[ProfileDTO])
async def list_users(session: AsyncSession = Depends(get_session)) -> list[ProfileDTO]:
    """All stored profiles."""
    profiles = await RecordStore(session).list_profiles()
    return [ProfileDTO.model_validate(p) for p in profiles]


@app.get("/api/users/{user_id}", response_model=ProfileDTO)
async def get_user(user_id: str, session: AsyncSession = Depends(get_session)) -> ProfileDTO:
    """Profile by business key."""
    profile = await RecordStore(session).find_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return ProfileDTO.model_validate(profile)


@app.get("/api/transactions", response_model=list[LedgerEntryDTO])
async def list_transactions(session: AsyncSession = Depends(get_session)) -> list[LedgerEntryDTO]:
    """All stored ledger entries, newest first."""
    entries = await RecordStore(session).list_ledger_entries()
    return [LedgerEntryDTO.model_validate(e) for e in entries]


@app.get("/api/transactions/{reference}", response_model=LedgerEntryDTO)
async def get_transaction(reference: str, session: AsyncSession = Depends(get_session)) -> LedgerEntryDTO:
    """Ledger entry by business key."""
    entry = await RecordStore(session).find_ledger_entry(reference)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return LedgerEntryDTO.model_validate(entry)
