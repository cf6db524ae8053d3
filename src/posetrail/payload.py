from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from .core.errors import MalformedSnapshotError
from .core.snapshot import PoseSnapshot, snapshot_from_dict, snapshot_to_dict

FILENAME_PREFIX = "camera_states_"


def iso_timestamp(ms: int) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix, e.g. ``2024-05-01T09:30:00.250Z``."""
    seconds, millis = divmod(int(ms), 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def upload_filename(ms: int) -> str:
    stamp = iso_timestamp(ms).replace(":", "-").replace(".", "-")
    return f"{FILENAME_PREFIX}{stamp}.json"


def build_session_document(
    states: Sequence[PoseSnapshot],
    *,
    recorded_at_ms: int,
    model_path: str | None,
    folder_url: str | None,
    record_interval_ms: int,
) -> dict[str, Any]:
    return {
        "metadata": {
            "recordedAt": iso_timestamp(recorded_at_ms),
            "totalStates": len(states),
            "modelPath": model_path,
            "dropboxFolderUrl": folder_url,
            "recordInterval": int(record_interval_ms),
        },
        "states": [snapshot_to_dict(s) for s in states],
    }


def build_upload_payload(folder_id: str, filename: str, document: dict[str, Any]) -> dict[str, str]:
    """Request body accepted by the relay endpoint; `data` carries the document as text."""
    return {
        "folderId": folder_id,
        "filename": filename,
        "data": json.dumps(document, indent=2),
    }


@dataclass(frozen=True)
class SessionDocument:
    recorded_at: str | None
    total_states: int
    model_path: str | None
    folder_url: str | None
    record_interval_ms: int | None
    states: tuple[PoseSnapshot, ...]


def load_session_document(text: str | bytes) -> SessionDocument:
    """Parse the `data` string of an upload back into snapshots."""
    try:
        raw = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedSnapshotError(f"Failed to parse session document: {e}") from e
    if not isinstance(raw, dict) or not isinstance(raw.get("states"), list):
        raise MalformedSnapshotError("Session document must be an object with a 'states' array")

    meta = raw.get("metadata") or {}
    if not isinstance(meta, dict):
        raise MalformedSnapshotError("Session document 'metadata' must be an object")

    states = tuple(snapshot_from_dict(s, strict=True) for s in raw["states"])
    interval = meta.get("recordInterval")
    return SessionDocument(
        recorded_at=meta.get("recordedAt"),
        total_states=int(meta.get("totalStates", len(states))),
        model_path=meta.get("modelPath"),
        folder_url=meta.get("dropboxFolderUrl"),
        record_interval_ms=int(interval) if interval is not None else None,
        states=states,
    )
