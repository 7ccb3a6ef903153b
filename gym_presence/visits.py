"""Visit history reporting: totals, per-day breakdown and CSV export."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from gym_presence.models import SavedLocation, VisitSession
from gym_presence.timeutils import dt_from_epoch_ms, format_hhmmss, tzinfo_from_name


def write_visits_csv(
    visits: Sequence[VisitSession],
    out_path: str | Path,
    tz_name: str,
    locations: Mapping[str, SavedLocation] | None = None,
) -> None:
    """Write visit sessions to CSV. Open sessions have empty end/duration columns."""

    p = Path(out_path)
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(
            f,
            fieldnames=[
                "visit_id",
                "location_id",
                "location_name",
                "start_time",
                "end_time",
                "duration_seconds",
                "duration_hhmmss",
                "start_epoch_ms",
                "end_epoch_ms",
            ],
        )
        w.writeheader()
        for v in visits:
            loc = (locations or {}).get(v.saved_location_id)
            dur = v.duration_seconds
            w.writerow(
                {
                    "visit_id": v.id,
                    "location_id": v.saved_location_id,
                    "location_name": loc.name if loc else "",
                    "start_time": dt_from_epoch_ms(v.start_ms, tz_name).isoformat(sep=" "),
                    "end_time": "" if v.end_ms is None else dt_from_epoch_ms(v.end_ms, tz_name).isoformat(sep=" "),
                    "duration_seconds": "" if dur is None else f"{dur:.3f}",
                    "duration_hhmmss": "" if dur is None else format_hhmmss(dur),
                    "start_epoch_ms": v.start_ms,
                    "end_epoch_ms": "" if v.end_ms is None else v.end_ms,
                }
            )


@dataclass(frozen=True, slots=True)
class VisitsTotal:
    """Total duration summary over closed visits."""

    visits: int
    total_seconds: float
    open_visits: int = 0

    @property
    def total_hhmmss(self) -> str:
        return format_hhmmss(self.total_seconds)


def sum_visits(visits: Iterable[VisitSession]) -> VisitsTotal:
    """Sum closed visit durations; open visits are counted separately."""

    total = 0.0
    count = 0
    open_count = 0
    for v in visits:
        dur = v.duration_seconds
        if dur is None:
            open_count += 1
            continue
        total += dur
        count += 1
    return VisitsTotal(visits=count, total_seconds=total, open_visits=open_count)


def overlap_seconds(visit: VisitSession, start_ms: int, end_ms_exclusive: int) -> float:
    if visit.end_ms is None:
        return 0.0
    lo = max(visit.start_ms, start_ms)
    hi = min(visit.end_ms, end_ms_exclusive)
    return max(0.0, (hi - lo) / 1000.0)


def day_ranges(start_d: date, end_d: date, tz_name: str) -> list[tuple[date, int, int]]:
    """Return list of (day, start_ms, end_ms) for each day in range in tz."""

    tz = tzinfo_from_name(tz_name)
    days: list[tuple[date, int, int]] = []
    cur = start_d
    while cur <= end_d:
        sdt = datetime.combine(cur, time.min).replace(tzinfo=tz)
        edt = datetime.combine(cur + timedelta(days=1), time.min).replace(tzinfo=tz)
        days.append((cur, int(sdt.timestamp() * 1000), int(edt.timestamp() * 1000)))
        cur = cur + timedelta(days=1)
    return days


def seconds_per_day(visits: Iterable[VisitSession], start_d: date, end_d: date, tz_name: str) -> dict[date, float]:
    """Time spent per local calendar day, clipping visits that cross midnight."""

    days = day_ranges(start_d, end_d, tz_name)
    out: dict[date, float] = {d: 0.0 for d, _, _ in days}
    for v in visits:
        for d, d_start, d_end in days:
            out[d] += overlap_seconds(v, d_start, d_end)
    return out
