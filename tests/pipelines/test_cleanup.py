"""Unit tests for submission artifact cleanup."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

import pytest

from portal.pipelines.cleanup import SubmissionScope, workspace_name


def test_workspace_names_are_unique() -> None:
    names = {workspace_name() for _ in range(200)}
    assert len(names) == 200


@pytest.mark.asyncio
async def test_scope_removes_workspace_and_archive(tmp_path: Path) -> None:
    archive = tmp_path / "upload.zip"
    archive.write_bytes(b"zip")

    async with SubmissionScope(archive) as scope:
        workspace = scope.create_workspace(tmp_path / "scratch")
        (workspace / "nested").mkdir()
        (workspace / "nested" / "file.json").write_text("{}")
        assert workspace.is_dir()

    assert not workspace.exists()
    assert not archive.exists()
    assert (tmp_path / "scratch").is_dir()


@pytest.mark.asyncio
async def test_scope_releases_on_error(tmp_path: Path) -> None:
    archive = tmp_path / "upload.zip"
    archive.write_bytes(b"zip")

    with pytest.raises(RuntimeError, match="boom"):
        async with SubmissionScope(archive) as scope:
            workspace = scope.create_workspace(tmp_path / "scratch")
            raise RuntimeError("boom")

    assert not workspace.exists()
    assert not archive.exists()


@pytest.mark.asyncio
async def test_scope_without_workspace(tmp_path: Path) -> None:
    archive = tmp_path / "upload.zip"
    archive.write_bytes(b"zip")

    async with SubmissionScope(archive):
        pass

    assert not archive.exists()
    assert not (tmp_path / "scratch").exists()


@pytest.mark.asyncio
async def test_release_failure_is_logged_not_raised(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    def busy(path, *args, **kwargs):
        raise OSError("resource busy")

    monkeypatch.setattr(shutil, "rmtree", busy)
    archive = tmp_path / "upload.zip"
    archive.write_bytes(b"zip")

    with caplog.at_level(logging.WARNING, logger="portal.pipelines.cleanup"):
        with pytest.raises(ValueError, match="primary"):
            async with SubmissionScope(archive) as scope:
                scope.create_workspace(tmp_path / "scratch")
                raise ValueError("primary")

    assert "resource busy" in caplog.text
    assert not archive.exists()
