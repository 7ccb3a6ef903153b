from __future__ import annotations

import argparse
import csv
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo


TZ: Final[str] = "Europe/Berlin"


@dataclass(frozen=True, slots=True)
class Place:
    name: str
    lat: float
    lon: float


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _row(rng: random.Random, at: datetime, place: Place, jitter_deg: float) -> dict[str, str]:
    # Mostly good fixes, occasionally a poor one the engine should reject.
    hacc = rng.choice([5.0, 8.0, 12.0, 20.0, 35.0, 250.0])
    return {
        "geoTime": str(_epoch_ms(at)),
        "latitude": f"{place.lat + rng.uniform(-jitter_deg, jitter_deg):.7f}",
        "longitude": f"{place.lon + rng.uniform(-jitter_deg, jitter_deg):.7f}",
        "horizontalAccuracy": f"{hacc:.1f}",
        "speed": f"{rng.choice([0.0, 0.0, rng.uniform(0.5, 2.5)]):.1f}",
    }


def generate_days(*, days: int, seed: int, start_local: datetime, home: Place, gym: Place) -> list[dict[str, str]]:
    """Simulate days at home with one evening gym session of 45-120 minutes."""

    rng = random.Random(seed)
    tz = ZoneInfo(TZ)
    out: list[dict[str, str]] = []
    day0 = start_local.replace(tzinfo=tz)

    for d in range(days):
        cur = day0 + timedelta(days=d)
        gym_at = cur.replace(hour=18) + timedelta(minutes=rng.uniform(0, 90))
        gym_until = gym_at + timedelta(minutes=rng.uniform(45, 120))
        day_end = cur.replace(hour=23)
        while cur < day_end:
            at_gym = gym_at <= cur < gym_until
            # 0.0002 deg ~ 20m of jitter around the place
            out.append(_row(rng, cur, gym if at_gym else home, 0.0002))
            cur = cur + timedelta(seconds=rng.uniform(60, 300))

    out.sort(key=lambda r: int(r["geoTime"]))
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake Path.csv with gym visits (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/Path.csv", help="Output CSV path")
    p.add_argument("--days", type=int, default=7, help="Number of simulated days")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-06 07:00:00",
        help=f"Start local time in {TZ}, e.g. '2025-01-06 07:00:00'",
    )
    args = p.parse_args()

    home = Place("home", 52.5200000, 13.4050000)
    gym = Place("gym", 52.5290000, 13.4160000)
    rows = generate_days(
        days=args.days,
        seed=args.seed,
        start_local=datetime.fromisoformat(args.start),
        home=home,
        gym=gym,
    )
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=["geoTime", "latitude", "longitude", "horizontalAccuracy", "speed"])
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, seed={args.seed})")
    print(f"Save the gym first: python -m gym_presence saved add --name Gym --lat {gym.lat} --lon {gym.lon}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
