"""Durable storage for avatar images."""
from __future__ import annotations

import logging
import shutil
import time
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class AvatarStorage:
    """Moves staged images into the media directory served under ``/uploads``."""

    def __init__(self, media_dir: Path) -> None:
        self.media_dir = media_dir

    def store(self, staged: Path) -> str:
        """Move ``staged`` into durable storage.

        Returns:
            The reference (file name) to record on the profile.
        """
        self.media_dir.mkdir(parents=True, exist_ok=True)
        suffix = staged.suffix.lower() or ".png"
        reference = f"avatar-{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:8]}{suffix}"
        shutil.move(str(staged), self.media_dir / reference)
        logger.info(f"Stored avatar as {reference}")
        return reference

    def discard(self, reference: str) -> None:
        """Remove a stored avatar that no profile ended up referencing."""
        (self.media_dir / reference).unlink(missing_ok=True)
        logger.info(f"Discarded avatar {reference}")
