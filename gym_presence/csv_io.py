"""CSV input for recorded position tracks (Path.csv export format)."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from gym_presence.models import Coordinate, PositionSample

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("geoTime", "latitude", "longitude")


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _parse_int(value: str) -> int:
    return int(value.strip())


def _parse_float(value: str) -> float:
    return float(value.strip())


def _sample_from_row(row: dict[str, str]) -> PositionSample:
    return PositionSample(
        coordinate=Coordinate(_parse_float(row["latitude"]), _parse_float(row["longitude"])),
        horizontal_accuracy_m=_parse_float(row.get("horizontalAccuracy", "-1") or "-1"),
        timestamp_ms=_parse_int(row["geoTime"]),
    )


def load_position_samples(csv_path: str | Path) -> tuple[list[PositionSample], CsvSummary]:
    """Load a track as position samples sorted by time.

    Columns used (others are ignored):
      - geoTime: epoch milliseconds
      - latitude/longitude: decimal degrees
      - horizontalAccuracy: meters, -1 when unknown

    Returns:
        (samples, summary)

    Raises:
        KeyError: A required column is missing from the header.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[PositionSample] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        missing = [c for c in REQUIRED_COLUMNS if c not in fieldnames]
        # an empty file has no header and simply yields nothing
        if fieldnames and missing:
            raise KeyError(f"CSV is missing required column(s) {missing}. Actual columns: {list(fieldnames)}")
        for row in reader:
            rows_total += 1
            try:
                parsed.append(_sample_from_row(row))
            except (ValueError, TypeError, AttributeError):
                # broken or empty rows are skipped
                continue

    parsed.sort(key=lambda s: s.timestamp_ms)
    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("Skipped %s unparseable CSV row(s)", summary.rows_skipped)
    return parsed, summary
