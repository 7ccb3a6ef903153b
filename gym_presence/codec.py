"""JSON encoding of record collections stored in the blob store.

Blob layout::

    {"version": 1, "kind": "saved_location", "records": [{...}, ...]}
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from gym_presence.models import Coordinate, LocationCategory, SavedLocation, VisitSession

FORMAT_VERSION = 1


class CodecError(ValueError):
    """Blob could not be encoded or decoded."""


def _saved_to_dict(loc: SavedLocation) -> dict[str, Any]:
    return {
        "id": loc.id,
        "name": loc.name,
        "category": loc.category.value,
        "latitude": loc.coordinate.latitude,
        "longitude": loc.coordinate.longitude,
        "address": loc.address,
        "geofence_radius_m": loc.geofence_radius_m,
        "visit_history": list(loc.visit_history),
    }


def _saved_from_dict(d: dict[str, Any]) -> SavedLocation:
    return SavedLocation(
        id=str(d["id"]),
        name=str(d["name"]),
        category=LocationCategory(d["category"]),
        coordinate=Coordinate(float(d["latitude"]), float(d["longitude"])),
        address=str(d.get("address", "") or ""),
        geofence_radius_m=float(d["geofence_radius_m"]),
        visit_history=tuple(int(ts) for ts in d.get("visit_history", ())),
    )


def _visit_to_dict(v: VisitSession) -> dict[str, Any]:
    return {
        "id": v.id,
        "saved_location_id": v.saved_location_id,
        "start_ms": v.start_ms,
        "end_ms": v.end_ms,
    }


def _visit_from_dict(d: dict[str, Any]) -> VisitSession:
    end = d.get("end_ms")
    return VisitSession(
        id=str(d["id"]),
        saved_location_id=str(d["saved_location_id"]),
        start_ms=int(d["start_ms"]),
        end_ms=None if end is None else int(end),
    )


_CODECS = {
    "saved_location": (SavedLocation, _saved_to_dict, _saved_from_dict),
    "visit_session": (VisitSession, _visit_to_dict, _visit_from_dict),
}


def encode_records(kind: str, records: Sequence[Any]) -> bytes:
    """Serialize a homogeneous record sequence to UTF-8 JSON bytes.

    Raises:
        CodecError: On unknown kind or a record of the wrong type.
    """

    try:
        cls, to_dict, _ = _CODECS[kind]
    except KeyError as exc:
        raise CodecError(f"Unknown record kind: {kind!r}") from exc
    rows = []
    for rec in records:
        if not isinstance(rec, cls):
            raise CodecError(f"Expected {cls.__name__}, got {type(rec).__name__}")
        rows.append(to_dict(rec))
    payload = {"version": FORMAT_VERSION, "kind": kind, "records": rows}
    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise CodecError(f"Cannot encode {kind} records: {exc}") from exc


def decode_records(kind: str, data: bytes) -> list[Any]:
    """Parse bytes produced by ``encode_records``.

    Raises:
        CodecError: If the blob is corrupt, of another kind or version.
    """

    try:
        _, _, from_dict = _CODECS[kind]
    except KeyError as exc:
        raise CodecError(f"Unknown record kind: {kind!r}") from exc
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CodecError(f"Corrupt {kind} blob: {exc}") from exc

    if not isinstance(payload, dict) or payload.get("kind") != kind:
        raise CodecError(f"Blob does not hold {kind} records")
    if payload.get("version") != FORMAT_VERSION:
        raise CodecError(f"Unsupported {kind} blob version: {payload.get('version')!r}")
    rows = payload.get("records")
    if not isinstance(rows, list):
        raise CodecError(f"Blob for {kind} has no record list")
    try:
        return [from_dict(row) for row in rows]
    except (KeyError, TypeError, ValueError) as exc:
        raise CodecError(f"Malformed {kind} record: {exc}") from exc
