"""Tests for compressed result files."""

import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

from ghfacts.collector import flatten
from ghfacts.indexes import build_indexes
from ghfacts.models import CollectionOptions, CollectionResult, RepositoryFailure
from ghfacts.results import (
    clean_old_result_files,
    read_result_file,
    result_file_name,
    write_result_file,
)

from conftest import NOW


def _result(sample_dataset) -> CollectionResult:
    flat = flatten([sample_dataset])
    return CollectionResult(
        datasets=[sample_dataset],
        flat=flat,
        indexes=build_indexes(flat),
        failures=[RepositoryFailure("octo-org/missing", "NotFoundError", "Not found", 404)],
        options=CollectionOptions(),
        started_at=NOW - timedelta(seconds=2),
        completed_at=NOW,
    )


class TestResultFiles:
    """Tests for result file storage."""

    def test_file_name(self) -> None:
        """Test the timestamped name."""
        when = datetime(2024, 3, 31, 9, 5, 7, tzinfo=UTC)

        assert result_file_name("summary", when) == "summary_2024-03-31_09-05-07.json.xz"

    def test_write_and_read(self, tmp_path: Path, sample_dataset) -> None:
        """Test the document namespaces survive compression."""
        path = write_result_file(
            _result(sample_dataset),
            tmp_path / "results",
            calculated={"COMMITS_TOTAL": "4"},
            metadata={"detection_mode": "repository"},
        )

        document = read_result_file(path)

        assert path.name == "summary_2024-03-31_12-00-00.json.xz"
        assert set(document) == {"raw", "indexes", "calculated", "metadata"}
        assert len(document["raw"]["commits"]) == 4
        assert document["indexes"]["issues_by_repo"] == {"octo-org/widgets": [0, 1, 2]}
        assert document["calculated"] == {"COMMITS_TOTAL": "4"}
        metadata = document["metadata"]
        assert metadata["repositories"] == ["octo-org/widgets"]
        assert metadata["counts"]["issues"] == 3
        assert metadata["failures"][0]["status_code"] == 404
        assert metadata["duration_ms"] == 2000
        assert metadata["detection_mode"] == "repository"
        assert metadata["rate_limit_before"] is None

    def test_clean_old_files(self, tmp_path: Path) -> None:
        """Test age and count limits."""
        now = datetime.now(UTC)
        paths = []
        for age_hours in (1, 2, 3, 200):
            path = tmp_path / f"summary_{age_hours}.json.xz"
            path.write_bytes(b"")
            mtime = (now - timedelta(hours=age_hours)).timestamp()
            os.utime(path, (mtime, mtime))
            paths.append(path)
        (tmp_path / "notes.txt").write_text("keep")

        deleted = clean_old_result_files(tmp_path, max_age_hours=168, max_files=2, now=now)

        assert sorted(deleted) == sorted([paths[2], paths[3]])
        assert paths[0].exists() and paths[1].exists()
        assert (tmp_path / "notes.txt").exists()

    def test_clean_missing_directory(self, tmp_path: Path) -> None:
        """Test cleaning a directory that doesn't exist."""
        assert clean_old_result_files(tmp_path / "nope") == []
