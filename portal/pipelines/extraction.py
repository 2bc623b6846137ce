"""Archive intake: submission validation and zip extraction.

Validation only looks at the declared media type and size, so it runs before
anything touches the disk. Extraction is all-or-nothing: any member that cannot
be decompressed aborts the whole archive.
"""
from __future__ import annotations

import logging
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from portal.config import UploadSettings
from portal.errors import ArchiveCorruptError, InputValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveSubmission:
    """An uploaded archive waiting to be ingested."""
    path: Path
    filename: str
    media_type: str | None
    size: int


def normalize_media_type(media_type: str | None) -> str:
    """Strip parameters and case from a Content-Type value."""
    if not media_type:
        return ""
    return media_type.split(";", 1)[0].strip().lower()


def validate_submission(media_type: str | None, size: int | None, config: UploadSettings) -> None:
    """Reject a submission by its declared attributes.

    Raises:
        InputValidationError: If the size exceeds the ceiling or the media type
            is not an accepted archive type.
    """
    if size is not None and size > config.max_archive_bytes:
        raise InputValidationError(
            f"Archive is {size} bytes; the limit is {config.max_archive_bytes} bytes",
            status_code=413,
            context={"size": size, "max_archive_bytes": config.max_archive_bytes},
        )

    declared = normalize_media_type(media_type)
    allowed = {normalize_media_type(t) for t in config.allowed_media_types}
    if declared not in allowed:
        raise InputValidationError(
            f"Only ZIP archives are accepted, got '{declared or 'unknown'}'",
            status_code=415,
            context={"media_type": declared, "allowed_media_types": sorted(allowed)},
        )


def _check_member(info: zipfile.ZipInfo) -> None:
    name = PurePosixPath(info.filename.replace("\\", "/"))
    if name.is_absolute() or ".." in name.parts:
        raise ArchiveCorruptError(
            f"Archive member escapes the extraction root: {info.filename}",
            context={"member": info.filename},
        )


def extract_archive(archive_path: Path, workspace: Path, *, max_extracted_bytes: int) -> int:
    """Decompress every member of ``archive_path`` into ``workspace``.

    The internal directory structure is preserved.

    Args:
        archive_path: The uploaded zip file.
        workspace: An existing, empty scratch directory.
        max_extracted_bytes: Ceiling on the declared uncompressed total.

    Returns:
        Number of file members extracted.

    Raises:
        ArchiveCorruptError: If the archive cannot be fully decompressed.
    """
    try:
        with zipfile.ZipFile(archive_path) as archive:
            members = archive.infolist()
            for info in members:
                _check_member(info)

            total = sum(info.file_size for info in members)
            if total > max_extracted_bytes:
                raise ArchiveCorruptError(
                    f"Archive expands to {total} bytes; the limit is {max_extracted_bytes} bytes",
                    context={"uncompressed_size": total},
                )

            bad_member = archive.testzip()
            if bad_member is not None:
                raise ArchiveCorruptError(
                    f"CRC check failed for archive member {bad_member}",
                    context={"member": bad_member},
                )

            archive.extractall(workspace)
    except ArchiveCorruptError:
        raise
    except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError, EOFError, ValueError) as e:
        logger.error(f"Failed to extract {archive_path.name}: {e}")
        raise ArchiveCorruptError(
            f"Archive could not be decompressed: {e}",
            context={"archive": archive_path.name},
        ) from e

    file_count = sum(1 for info in members if not info.is_dir())
    logger.info(f"Extracted {file_count} files from {archive_path.name}")
    for info in members:
        logger.debug(f"Archive member: {info.filename}")
    return file_count
