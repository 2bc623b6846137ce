"""Scoped ownership of per-submission disk artifacts.

``SubmissionScope`` owns the uploaded archive from the moment a submission is
received and the scratch workspace from the moment it is created. Leaving the
scope removes both, whatever the outcome of the pipeline.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import time
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


def workspace_name() -> str:
    """Unique directory name: millisecond timestamp plus a random disambiguator."""
    return f"{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:8]}"


class SubmissionScope:
    """Async context manager guaranteeing release of submission artifacts."""

    def __init__(self, archive_path: Path | None) -> None:
        self.archive_path = archive_path
        self.workspace: Path | None = None

    def create_workspace(self, root: Path) -> Path:
        """Create and take ownership of a fresh scratch workspace under ``root``."""
        root.mkdir(parents=True, exist_ok=True)
        workspace = root / workspace_name()
        # Tracked before mkdir so a failure part-way is still released.
        self.workspace = workspace
        workspace.mkdir()
        return workspace

    def release(self) -> list[str]:
        """Remove the workspace and the archive, returning any problems."""
        problems: list[str] = []

        if self.workspace is not None and self.workspace.exists():
            try:
                shutil.rmtree(self.workspace)
            except OSError as e:
                problems.append(f"workspace {self.workspace}: {e}")

        if self.archive_path is not None:
            try:
                self.archive_path.unlink(missing_ok=True)
            except OSError as e:
                problems.append(f"archive {self.archive_path}: {e}")

        return problems

    async def __aenter__(self) -> SubmissionScope:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        problems = await asyncio.to_thread(self.release)
        for problem in problems:
            logger.warning(f"Cleanup failed for {problem}")
        return False
