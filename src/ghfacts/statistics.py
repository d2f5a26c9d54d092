"""Statistical helpers for fact calculation.

All results are rounded half-up to two decimal places so that facts
render identically across runs and platforms.
"""

import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, TypeVar

import polars as pl

T = TypeVar("T")

BinSize = Literal["hour", "day", "week"]

_BIN_EVERY: dict[str, str] = {"hour": "1h", "day": "1d", "week": "1w"}
_BIN_HOURS: dict[str, int] = {"hour": 1, "day": 24, "week": 168}


@dataclass(frozen=True)
class TimeBin:
    """Aggregated values for one time bin.

    Attributes:
        start: Bin start (inclusive).
        end: Bin end (exclusive).
        count: Sum of values in the bin.
        average: Count per hour of bin duration.
    """

    start: datetime
    end: datetime
    count: float
    average: float


def round2(value: float) -> float:
    """Round half-up to two decimals."""
    return math.floor(value * 100 + 0.5) / 100


def ratio(numerator: float, denominator: float) -> float:
    """Ratio, or 0 when the denominator is 0."""
    if denominator == 0:
        return 0.0
    return round2(numerator / denominator)


def percentage(part: float, whole: float) -> float:
    """Percentage of ``part`` in ``whole``, or 0 when ``whole`` is 0."""
    if whole == 0:
        return 0.0
    return math.floor(part / whole * 10_000 + 0.5) / 100


def mean(values: list[float]) -> float:
    """Arithmetic mean rounded to two decimals; 0 for no values."""
    if not values:
        return 0.0
    return round2(sum(values) / len(values))


def median(values: list[float]) -> float:
    """Middle value, averaging the two middle values for even counts; 0 for no values."""
    if not values:
        return 0.0
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return round2((ordered[middle - 1] + ordered[middle]) / 2)
    return ordered[middle]


def percentiles(values: list[float], points: Iterable[float]) -> dict[str, float]:
    """Percentiles with linear interpolation between closest ranks.

    Args:
        values: Sample values.
        points: Percentiles in 0..100; others are skipped.

    Returns:
        Mapping like ``{"P25": 1.5, "P50": 3.0}``. Empty for no values.
    """
    if not values:
        return {}
    series = pl.Series("values", values, dtype=pl.Float64)
    result: dict[str, float] = {}
    for point in points:
        if point < 0 or point > 100:
            continue
        value = series.quantile(point / 100, interpolation="linear")
        result[f"P{format_number(point)}"] = round2(value)
    return result


def variance(values: list[float]) -> float:
    """Population variance around the rounded mean; 0 for fewer than two values."""
    if len(values) <= 1:
        return 0.0
    center = mean(values)
    return round2(sum((value - center) ** 2 for value in values) / len(values))


def stddev(values: list[float]) -> float:
    """Population standard deviation rounded to two decimals."""
    return round2(math.sqrt(variance(values)))


def gini(values: list[float]) -> float:
    """Gini coefficient: 0 is perfect equality, values near 1 mean concentration.

    Args:
        values: Non-negative amounts, e.g. commits per contributor.

    Returns:
        Coefficient rounded to two decimals; 0 for fewer than two values
        or an all-zero sample.
    """
    if len(values) <= 1:
        return 0.0
    ordered = sorted(values)
    n = len(ordered)
    center = mean(ordered)
    if center == 0:
        return 0.0
    total = sum((2 * (i + 1) - n - 1) * value for i, value in enumerate(ordered))
    return round2(total / (n * n * center))


def growth_rate(current: float, previous: float) -> float:
    """Relative change from ``previous`` to ``current``.

    Returns 1 (100%) for growth from zero and 0 when both are zero.
    """
    if previous == 0:
        return 1.0 if current > 0 else 0.0
    return round2((current - previous) / previous)


def top_n(items: list[T], n: int, key: Callable[[T], float]) -> list[T]:
    """The ``n`` items with the largest key, in descending order."""
    if not items or n <= 0:
        return []
    return sorted(items, key=key, reverse=True)[:n]


def days_between(start: datetime, end: datetime) -> float:
    return round2(abs((end - start).total_seconds()) / 86_400)


def hours_between(start: datetime, end: datetime) -> float:
    return round2(abs((end - start).total_seconds()) / 3_600)


def business_days_between(start: datetime, end: datetime) -> int:
    """Count weekdays stepping one day at a time from ``start`` while before ``end``."""
    if start >= end:
        return 0
    days = 0
    current = start
    while current < end:
        if current.weekday() < 5:
            days += 1
        current += timedelta(days=1)
    return days


def count_by(keys: Iterable[str]) -> dict[str, int]:
    """Tally occurrences of each key, most frequent first, ties by key."""
    keys = list(keys)
    if not keys:
        return {}
    counts = (
        pl.DataFrame({"key": keys}, schema={"key": pl.Utf8})
        .group_by("key")
        .agg(pl.len().alias("count"))
        .sort(["count", "key"], descending=[True, False])
    )
    return dict(zip(counts["key"].to_list(), counts["count"].to_list(), strict=True))


def bin_by_time(points: list[tuple[datetime, float]], bin_size: BinSize) -> list[TimeBin]:
    """Aggregate timestamped values into fixed bins.

    Weeks start on Monday.

    Args:
        points: ``(timestamp, value)`` pairs.
        bin_size: ``hour``, ``day`` or ``week``.

    Returns:
        Non-empty bins in chronological order.
    """
    if bin_size not in _BIN_EVERY:
        raise ValueError(f"Unsupported bin size: {bin_size}")
    if not points:
        return []

    frame = (
        pl.DataFrame(
            {
                "timestamp": [timestamp for timestamp, _ in points],
                "value": [float(value) for _, value in points],
            }
        )
        .with_columns(pl.col("timestamp").dt.truncate(_BIN_EVERY[bin_size]).alias("start"))
        .group_by("start")
        .agg(pl.col("value").sum().alias("count"))
        .sort("start")
    )

    hours = _BIN_HOURS[bin_size]
    return [
        TimeBin(
            start=row["start"],
            end=row["start"] + timedelta(hours=hours),
            count=row["count"],
            average=round2(row["count"] / hours),
        )
        for row in frame.iter_rows(named=True)
    ]


def format_number(value: float | int) -> str:
    """Render whole numbers without a trailing ``.0``."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
