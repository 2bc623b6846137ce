"""Payload discovery inside an extracted archive.

The archive layout is not under our control, so payload files are searched
for by name across the whole tree. Traversal is depth-first with entries
visited in lexical order, which keeps the choice stable when several files
share a name.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)

PROFILE_ROLE = "user-payload"
LEDGER_ROLE = "transaction-payload"
AVATAR_ROLE = "avatar-image"


@dataclass(frozen=True)
class FoundPayload:
    """A payload role resolved to a file."""
    role: str
    path: Path
    matched_name: str

    found = True


@dataclass(frozen=True)
class MissingPayload:
    """A payload role with no matching file, plus what the archive did contain."""
    role: str
    tried: tuple[str, ...]
    available: tuple[str, ...]

    found = False


LocateResult = FoundPayload | MissingPayload


def walk_files(root: Path) -> list[Path]:
    """Return every regular file under ``root`` in depth-first lexical order."""
    files: list[Path] = []

    def visit(directory: Path) -> None:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                visit(Path(entry.path))
            elif entry.is_file(follow_symlinks=False):
                files.append(Path(entry.path))

    visit(root)
    return files


def locate_payload(
    root: Path,
    role: str,
    canonical: str,
    fallbacks: Sequence[str] = (),
) -> LocateResult:
    """Find the file for ``role``, trying the canonical name first.

    Each fallback name is tried in order only after the canonical name had
    no match anywhere in the tree.
    """
    files = walk_files(root)
    candidates = (canonical, *fallbacks)

    for name in candidates:
        for path in files:
            if path.name == name:
                if name != canonical:
                    logger.info(f"Found {role} under alternative name {name}")
                return FoundPayload(role=role, path=path, matched_name=name)

    available = tuple(path.relative_to(root).as_posix() for path in files)
    logger.info(f"No {role} found; archive contains: {', '.join(available) or '(nothing)'}")
    return MissingPayload(role=role, tried=candidates, available=available)
