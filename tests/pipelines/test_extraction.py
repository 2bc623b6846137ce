"""Unit tests for submission validation and archive extraction."""

from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from portal.config import UploadSettings
from portal.errors import ArchiveCorruptError, InputValidationError
from portal.pipelines.extraction import extract_archive, normalize_media_type, validate_submission
from tests.archives import build_zip, standard_members, write_zip


class TestValidateSubmission:
    def test_accepts_zip_media_types(self) -> None:
        config = UploadSettings()
        for media_type in ("application/zip", "application/x-zip-compressed", "Application/ZIP; charset=binary"):
            validate_submission(media_type, 1024, config)

    def test_rejects_oversized_archive(self) -> None:
        config = UploadSettings()
        with pytest.raises(InputValidationError) as info:
            validate_submission("application/zip", 10 * 1024 * 1024 + 1, config)
        assert info.value.status_code == 413
        assert info.value.code == "input_validation"

    def test_accepts_archive_at_the_ceiling(self) -> None:
        validate_submission("application/zip", 10 * 1024 * 1024, UploadSettings())

    def test_rejects_non_archive_media_type(self) -> None:
        with pytest.raises(InputValidationError) as info:
            validate_submission("application/json", 10, UploadSettings())
        assert info.value.status_code == 415
        assert info.value.context["media_type"] == "application/json"

    def test_rejects_missing_media_type(self) -> None:
        with pytest.raises(InputValidationError):
            validate_submission(None, 10, UploadSettings())

    def test_size_checked_before_media_type(self) -> None:
        with pytest.raises(InputValidationError) as info:
            validate_submission("text/plain", 10**9, UploadSettings())
        assert info.value.status_code == 413


def test_normalize_media_type() -> None:
    assert normalize_media_type(" Application/Zip ; q=1") == "application/zip"
    assert normalize_media_type(None) == ""


class TestExtractArchive:
    def test_preserves_directory_structure(self, tmp_path: Path) -> None:
        archive = write_zip(tmp_path / "a.zip", standard_members("export/2024/"))
        workspace = tmp_path / "ws"
        workspace.mkdir()

        count = extract_archive(archive, workspace, max_extracted_bytes=10**6)

        assert count == 3
        assert (workspace / "export" / "2024" / "userData.json").is_file()
        assert (workspace / "export" / "2024" / "avatar.png").is_file()

    def test_not_a_zip(self, tmp_path: Path) -> None:
        archive = tmp_path / "bogus.zip"
        archive.write_bytes(b"definitely not a zip file")

        with pytest.raises(ArchiveCorruptError):
            extract_archive(archive, tmp_path, max_extracted_bytes=10**6)

    def test_truncated_archive(self, tmp_path: Path) -> None:
        data = build_zip(standard_members())
        archive = tmp_path / "truncated.zip"
        archive.write_bytes(data[: len(data) // 2])

        with pytest.raises(ArchiveCorruptError):
            extract_archive(archive, tmp_path / "ws", max_extracted_bytes=10**6)

    def test_rejects_path_traversal(self, tmp_path: Path) -> None:
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../outside.json", b"{}")
        workspace = tmp_path / "ws"
        workspace.mkdir()

        with pytest.raises(ArchiveCorruptError) as info:
            extract_archive(archive, workspace, max_extracted_bytes=10**6)

        assert info.value.context["member"] == "../outside.json"
        assert not (tmp_path / "outside.json").exists()

    def test_rejects_oversized_expansion(self, tmp_path: Path) -> None:
        archive = write_zip(tmp_path / "bomb.zip", {"big.json": "0" * 10_000})
        workspace = tmp_path / "ws"
        workspace.mkdir()

        with pytest.raises(ArchiveCorruptError):
            extract_archive(archive, workspace, max_extracted_bytes=1_000)

        assert list(workspace.iterdir()) == []
