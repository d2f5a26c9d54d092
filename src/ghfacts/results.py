"""Compressed JSON result files."""

import json
import logging
import lzma
from datetime import UTC, datetime, timedelta
from pathlib import Path

from ghfacts.models import CollectionResult

logger = logging.getLogger(__name__)

RESULT_SUFFIX = ".json.xz"


def result_file_name(command: str, when: datetime | None = None) -> str:
    """``{command}_{YYYY-MM-DD}_{HH-MM-SS}.json.xz`` in UTC."""
    when = when or datetime.now(UTC)
    return f"{command}_{when:%Y-%m-%d_%H-%M-%S}{RESULT_SUFFIX}"


def build_result_document(
    result: CollectionResult,
    calculated: dict[str, str] | None = None,
    metadata: dict | None = None,
) -> dict:
    """Assemble the ``raw``/``indexes``/``calculated``/``metadata`` document."""
    return {
        "raw": result.flat.to_dict(),
        "indexes": result.indexes.to_dict(),
        "calculated": calculated or {},
        "metadata": {
            "repositories": result.repository_names,
            "counts": result.flat.counts(),
            "failures": [failure.to_dict() for failure in result.failures],
            "incomplete": result.incomplete,
            "options": result.options.to_dict(),
            "started_at": result.started_at.isoformat(),
            "completed_at": result.completed_at.isoformat(),
            "duration_ms": result.duration_ms,
            "rate_limit_before": result.usage_before.to_dict() if result.usage_before else None,
            "rate_limit_after": result.usage_after.to_dict() if result.usage_after else None,
            **(metadata or {}),
        },
    }


def write_result_file(
    result: CollectionResult,
    directory: Path,
    command: str = "summary",
    calculated: dict[str, str] | None = None,
    metadata: dict | None = None,
) -> Path:
    """Write the collection result as xz-compressed JSON.

    Args:
        result: Collection outcome.
        directory: Output directory; created if missing.
        command: Command name used in the file name.
        calculated: Facts to store under ``calculated``.
        metadata: Extra metadata entries.

    Returns:
        Path of the written file.
    """
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / result_file_name(command, result.completed_at)
    document = build_result_document(result, calculated, metadata)

    with lzma.open(path, "wt", encoding="utf-8") as f:
        json.dump(document, f, default=str)

    logger.info("Wrote %s (%d bytes)", path, path.stat().st_size)
    return path


def read_result_file(path: Path) -> dict:
    with lzma.open(path, "rt", encoding="utf-8") as f:
        return json.load(f)


def clean_old_result_files(
    directory: Path,
    max_age_hours: float = 168,
    max_files: int = 50,
    now: datetime | None = None,
) -> list[Path]:
    """Delete result files older than ``max_age_hours`` and keep at most ``max_files``.

    Returns:
        Paths that were deleted.
    """
    if not directory.exists():
        return []

    now = now or datetime.now(UTC)
    cutoff = (now - timedelta(hours=max_age_hours)).timestamp()
    files = sorted(
        directory.glob(f"*{RESULT_SUFFIX}"), key=lambda p: p.stat().st_mtime, reverse=True
    )

    deleted = []
    for position, path in enumerate(files):
        if position >= max_files or path.stat().st_mtime < cutoff:
            path.unlink()
            deleted.append(path)

    if deleted:
        logger.info("Removed %d old result files from %s", len(deleted), directory)
    return deleted
