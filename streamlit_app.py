from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from pathlib import Path

import streamlit as st

from gym_presence.blobstore import FileBlobStore
from gym_presence.errors import ErrorSink
from gym_presence.events import EventNotifier
from gym_presence.models import DEFAULT_TZ, SavedLocation, VisitSession
from gym_presence.saved import SavedLocationStore, VisitHistoryStore
from gym_presence.timeutils import dt_from_epoch_ms, format_hhmmss, tzinfo_from_name
from gym_presence.visits import seconds_per_day, sum_visits


async def _read_all(data_dir: str) -> tuple[list[SavedLocation], list[VisitSession], ErrorSink]:
    errors = ErrorSink()
    blobs = FileBlobStore(data_dir)
    saved = await SavedLocationStore(blobs, EventNotifier(), errors).list_all()
    visits = await VisitHistoryStore(blobs, errors).list_all()
    return saved, visits, errors


@st.cache_data(show_spinner=False)
def _load(data_dir: str, mtime: float) -> tuple[list[SavedLocation], list[VisitSession], list[str]]:
    _ = mtime  # part of cache key so updated files reload automatically
    saved, visits, errors = asyncio.run(_read_all(data_dir))
    return saved, visits, [f"{type(e).__name__}: {e.detail}" for e in errors.recent]


def _dir_mtime(data_dir: str) -> float:
    p = Path(data_dir)
    if not p.exists():
        return 0.0
    return max((f.stat().st_mtime for f in p.glob("*.json")), default=0.0)


def main() -> None:
    st.set_page_config(page_title="Gym visits", layout="wide")
    st.title("Gym visits")

    with st.sidebar:
        st.subheader("Data")
        tz_name = st.text_input("Timezone (IANA)", value=DEFAULT_TZ)
        data_dir = st.text_input("Data directory", value="gym_data")
        today = datetime.now(tzinfo_from_name(tz_name)).date()
        start_d = st.date_input("From", value=today - timedelta(days=13))
        end_d = st.date_input("To", value=today)

    if not Path(data_dir).exists():
        st.error(f"Directory not found: {data_dir!r}. Save a location with `python -m gym_presence saved add`.")
        return
    if start_d > end_d:
        st.error("Start date must not be after end date.")
        return

    saved, visits, problems = _load(data_dir, _dir_mtime(data_dir))
    for msg in problems:
        st.warning(msg)

    now_ms = int(datetime.now(tzinfo_from_name(tz_name)).timestamp() * 1000)
    total = sum_visits(visits)
    c1, c2, c3 = st.columns(3)
    c1.metric("Saved gyms", str(len(saved)))
    c2.metric("Closed visits", str(total.visits))
    c3.metric("Total time", total.total_hhmmss)

    st.subheader("Saved gyms")
    st.dataframe(
        [
            {
                "name": loc.name,
                "category": loc.category.value,
                "address": loc.address,
                "radius_m": loc.geofence_radius_m,
                "visits_this_week": loc.visits_in_last(7, now_ms),
                "visits_total": len(loc.visit_history),
            }
            for loc in saved
        ],
        use_container_width=True,
    )

    st.subheader("Time per day")
    per_day = seconds_per_day(visits, start_d, end_d, tz_name)
    st.bar_chart({d.isoformat(): sec / 60.0 for d, sec in per_day.items()})

    names = {loc.id: loc.name for loc in saved}
    with st.expander("Visit log", expanded=False):
        st.dataframe(
            [
                {
                    "gym": names.get(v.saved_location_id, v.saved_location_id),
                    "start": dt_from_epoch_ms(v.start_ms, tz_name).isoformat(sep=" "),
                    "end": "" if v.end_ms is None else dt_from_epoch_ms(v.end_ms, tz_name).isoformat(sep=" "),
                    "duration": "open" if v.duration_seconds is None else format_hhmmss(v.duration_seconds),
                }
                for v in sorted(visits, key=lambda v: v.start_ms, reverse=True)
            ],
            use_container_width=True,
            height=420,
        )


if __name__ == "__main__":
    main()
