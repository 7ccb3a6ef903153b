"""Command-line interface for gym_presence.

Run:
    python -m gym_presence search --lat 52.52 --lon 13.40 --text yoga
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict

from gym_presence.blobstore import FileBlobStore
from gym_presence.cache import SearchCache
from gym_presence.config import EngineConfig
from gym_presence.csv_io import load_position_samples
from gym_presence.engine import GymPresenceEngine
from gym_presence.errors import ErrorSink, GymPresenceError
from gym_presence.events import VISIT_ENDED, VISIT_STARTED, EventNotifier
from gym_presence.models import DEFAULT_TZ, CandidateLocation, Coordinate, LocationCategory, VisitSession, new_id
from gym_presence.nominatim import NominatimConfig, NominatimSearchProvider
from gym_presence.replay import ReplayParams, TrackReplayProvider
from gym_presence.saved import SavedLocationStore, VisitHistoryStore
from gym_presence.search import ProximitySearchEngine
from gym_presence.timeutils import dt_from_epoch_ms, epoch_ms_from_dt, format_hhmmss, parse_dt
from gym_presence.visits import sum_visits, write_visits_csv


def _config_from_args(args: argparse.Namespace) -> EngineConfig:
    return EngineConfig(
        initial_search_radius_m=args.initial_radius_m,
        full_search_radius_m=args.full_radius_m,
        page_size=args.page_size,
        duplicate_radius_m=args.duplicate_radius_m,
    )


def _nominatim_from_args(args: argparse.Namespace) -> NominatimSearchProvider:
    return NominatimSearchProvider(
        NominatimConfig(
            accept_language=args.lang,
            min_interval_seconds=args.min_interval,
            timeout_seconds=args.timeout_seconds,
            user_agent=args.user_agent,
        )
    )


def _print_errors(errors: ErrorSink) -> None:
    for err in errors.recent:
        print(f"warning: {type(err).__name__}: {err.detail}", file=sys.stderr)


async def _search(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args)
    engine = ProximitySearchEngine(_nominatim_from_args(args), SearchCache(cfg.cache_ttl_seconds), cfg)
    results = await engine.search(Coordinate(args.lat, args.lon), args.text, args.page)
    if args.json:
        print(json.dumps([asdict(r) for r in results], ensure_ascii=False, indent=2, default=str))
        return 0
    if not results:
        print("no results")
        return 0
    for i, r in enumerate(results, start=(args.page - 1) * cfg.page_size + 1):
        print(f"{i:3d}. {r.name} [{r.category.value}] {r.distance_m:,.0f}m  {r.coordinate}  {r.address}")
    return 0


async def _saved(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args)
    errors = ErrorSink()
    store = SavedLocationStore(FileBlobStore(args.data_dir), EventNotifier(), errors, cfg)

    if args.saved_cmd == "add":
        candidate = CandidateLocation(
            id=new_id(),
            name=args.name,
            coordinate=Coordinate(args.lat, args.lon),
            address=args.address,
            distance_m=0.0,
            category=LocationCategory(args.category),
        )
        loc = await store.save(candidate, radius_m=args.radius_m)
        print(f"saved {loc.id} {loc.name} r={loc.geofence_radius_m:.0f}m")
    elif args.saved_cmd == "delete":
        removed = await store.delete(args.id)
        print("deleted" if removed else f"no saved location with id {args.id}")
    else:
        locs = await store.list_all()
        for loc in locs:
            print(
                f"{loc.id}  {loc.name} [{loc.category.value}] {loc.coordinate} "
                f"r={loc.geofence_radius_m:.0f}m visits={len(loc.visit_history)}"
            )
        print(f"{len(locs)} saved location(s)")
    _print_errors(errors)
    return 0


async def _replay(args: argparse.Namespace) -> int:
    samples, summary = load_position_samples(args.csv)
    print(f"rows={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")

    provider = TrackReplayProvider(
        ReplayParams(
            exit_grace_seconds=args.exit_grace_seconds,
            transition_gap_seconds=args.transition_gap_seconds,
            max_crossing_accuracy_m=args.accuracy_threshold_m,
        )
    )
    cfg = EngineConfig(accuracy_threshold_m=args.accuracy_threshold_m)
    engine = GymPresenceEngine(
        provider,
        _nominatim_from_args(args),
        FileBlobStore(args.data_dir),
        config=cfg,
        clock=provider.now,
    )

    def _show(prefix: str, v: VisitSession) -> None:
        at = v.start_ms if v.end_ms is None else v.end_ms
        line = f"{prefix} {v.saved_location_id} at {dt_from_epoch_ms(at, args.tz).isoformat(sep=' ')}"
        if v.duration_seconds is not None:
            line += f" ({format_hhmmss(v.duration_seconds)})"
        print(line)

    engine.notifier.subscribe(VISIT_STARTED, lambda v: _show("visit started", v))
    engine.notifier.subscribe(VISIT_ENDED, lambda v: _show("visit ended  ", v))

    await engine.start()
    await engine.drain()
    if engine.tracker.region_count == 0:
        print("no saved locations to monitor; add some with `saved add`", file=sys.stderr)
    n = await provider.replay(samples, settle=engine.drain)
    await engine.stop()
    print(f"replayed {n} sample(s), accepted fixes moved current location to {engine.current_location}")
    _print_errors(engine.errors)
    return 0


async def _visits(args: argparse.Namespace) -> int:
    errors = ErrorSink()
    blobs = FileBlobStore(args.data_dir)
    history = VisitHistoryStore(blobs, errors)
    saved = SavedLocationStore(blobs, EventNotifier(), errors)

    visits = await (history.list_for(args.location_id) if args.location_id else history.list_all())
    if args.since:
        since_ms = epoch_ms_from_dt(parse_dt(args.since, args.tz))
        visits = [v for v in visits if v.start_ms >= since_ms]
    if args.until:
        until_ms = epoch_ms_from_dt(parse_dt(args.until, args.tz))
        visits = [v for v in visits if v.start_ms < until_ms]
    locations = {loc.id: loc for loc in await saved.list_all()}
    if args.out:
        write_visits_csv(visits, args.out, args.tz, locations)
        print(f"exported: {args.out}")
    total = sum_visits(visits)
    print(f"visits={total.visits}, open={total.open_visits}, total={total.total_hhmmss} ({total.total_seconds:.1f}s)")
    _print_errors(errors)
    return 0


def _add_search_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--initial-radius-m", type=float, default=2_000.0, help="first search pass radius (m)")
    p.add_argument("--full-radius-m", type=float, default=5_000.0, help="expanded search radius (m)")
    p.add_argument("--page-size", type=int, default=20, help="results per page")
    p.add_argument("--duplicate-radius-m", type=float, default=50.0, help="minimum spacing between saved locations")


def _add_nominatim_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--lang", type=str, default="en", help="result language (accept-language)")
    p.add_argument(
        "--min-interval",
        type=float,
        default=1.0,
        help="minimum seconds between requests; the public service requires >= 1.0",
    )
    p.add_argument("--timeout-seconds", type=float, default=20.0, help="per-request timeout (s)")
    p.add_argument(
        "--user-agent",
        type=str,
        default="gym-presence/0.1.0 (nearby-search; set your own UA)",
        help="HTTP User-Agent (use your own identifier to avoid being blocked)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="gym_presence")
    p.add_argument("--log-level", type=str, default="WARNING", help="logging level (DEBUG, INFO, ...)")
    p.add_argument("--data-dir", type=str, default="gym_data", help="directory for saved records")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_s = sub.add_parser("search", help="search gyms near a coordinate")
    p_s.add_argument("--lat", type=float, required=True)
    p_s.add_argument("--lon", type=float, required=True)
    p_s.add_argument("--text", type=str, default="", help="free text; empty searches all gym categories")
    p_s.add_argument("--page", type=int, default=1)
    p_s.add_argument("--json", action="store_true", help="print results as JSON")
    _add_search_flags(p_s)
    _add_nominatim_flags(p_s)
    p_s.set_defaults(func=_search)

    p_sv = sub.add_parser("saved", help="manage saved locations")
    _add_search_flags(p_sv)
    saved_sub = p_sv.add_subparsers(dest="saved_cmd", required=True)
    saved_sub.add_parser("list", help="list saved locations")
    p_add = saved_sub.add_parser("add", help="save a location")
    p_add.add_argument("--name", type=str, required=True)
    p_add.add_argument("--lat", type=float, required=True)
    p_add.add_argument("--lon", type=float, required=True)
    p_add.add_argument("--address", type=str, default="")
    p_add.add_argument(
        "--category",
        type=str,
        default=LocationCategory.FITNESS.value,
        choices=[c.value for c in LocationCategory],
    )
    p_add.add_argument("--radius-m", type=float, default=None, help="geofence radius, 25-500m (default 50)")
    p_del = saved_sub.add_parser("delete", help="delete a saved location")
    p_del.add_argument("--id", type=str, required=True)
    p_sv.set_defaults(func=_saved)

    p_r = sub.add_parser("replay", help="replay a recorded track through the visit tracker")
    p_r.add_argument("--csv", type=str, default="Path.csv", help="track CSV (geoTime, latitude, longitude, ...)")
    p_r.add_argument("--tz", type=str, default=DEFAULT_TZ, help="timezone for printed times (IANA)")
    p_r.add_argument("--accuracy-threshold-m", type=float, default=100.0, help="drop fixes less accurate than this")
    p_r.add_argument(
        "--exit-grace-seconds",
        type=float,
        default=5 * 60.0,
        help="stay outside at least this long before a visit ends (GPS jitter)",
    )
    p_r.add_argument(
        "--transition-gap-seconds",
        type=float,
        default=10 * 60.0,
        help="max sample gap for midpoint estimation of entry/exit times",
    )
    _add_nominatim_flags(p_r)
    p_r.set_defaults(func=_replay)

    p_v = sub.add_parser("visits", help="summarize recorded visits")
    p_v.add_argument("--location-id", type=str, default=None)
    p_v.add_argument("--tz", type=str, default=DEFAULT_TZ, help="timezone (IANA)")
    p_v.add_argument("--since", type=str, default=None, help="only visits starting at or after this local time")
    p_v.add_argument("--until", type=str, default=None, help="only visits starting before this local time")
    p_v.add_argument("--out", type=str, default=None, help="export visits to this CSV path")
    p_v.set_defaults(func=_visits)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(asyncio.run(args.func(args)))
    except GymPresenceError as exc:
        print(f"error: {exc.detail}", file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
