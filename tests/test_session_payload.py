from __future__ import annotations

import json

import pytest

from posetrail.core.errors import MalformedSnapshotError
from posetrail.core.snapshot import PoseSnapshot
from posetrail.payload import (
    build_session_document,
    build_upload_payload,
    iso_timestamp,
    load_session_document,
    upload_filename,
)

# 2024-05-01T09:30:00.250Z
_T = 1714555800250


def test_iso_timestamp_and_filename() -> None:
    assert iso_timestamp(_T) == "2024-05-01T09:30:00.250Z"
    assert upload_filename(_T) == "camera_states_2024-05-01T09-30-00-250Z.json"


def test_upload_payload_shape() -> None:
    states = [
        PoseSnapshot(timestamp=_T, position=(0.0, 0.0, 5.0), fov=45.0),
        PoseSnapshot(timestamp=_T + 100, position=(0.0, 1.0, 5.0), fov=45.0),
    ]
    doc = build_session_document(
        states,
        recorded_at_ms=_T + 200,
        model_path="https://www.dropbox.com/scl/fo/F1/?rlkey=k",
        folder_url="https://www.dropbox.com/scl/fo/F1/?dl=0",
        record_interval_ms=100,
    )
    payload = build_upload_payload("F1", upload_filename(_T + 200), doc)

    assert set(payload) == {"folderId", "filename", "data"}
    assert payload["folderId"] == "F1"
    assert isinstance(payload["data"], str)

    data = json.loads(payload["data"])
    assert data["metadata"] == {
        "recordedAt": "2024-05-01T09:30:00.450Z",
        "totalStates": 2,
        "modelPath": "https://www.dropbox.com/scl/fo/F1/?rlkey=k",
        "dropboxFolderUrl": "https://www.dropbox.com/scl/fo/F1/?dl=0",
        "recordInterval": 100,
    }
    assert [s["timestamp"] for s in data["states"]] == [_T, _T + 100]
    assert data["states"][1]["position"] == {"x": 0.0, "y": 1.0, "z": 5.0}


def test_load_session_document_reads_back_states() -> None:
    doc = build_session_document(
        [PoseSnapshot(timestamp=1, fov=40.0), PoseSnapshot(timestamp=2, fov=41.0)],
        recorded_at_ms=_T,
        model_path=None,
        folder_url=None,
        record_interval_ms=100,
    )
    parsed = load_session_document(json.dumps(doc))

    assert parsed.total_states == 2
    assert parsed.model_path is None
    assert parsed.record_interval_ms == 100
    assert [s.fov for s in parsed.states] == [40.0, 41.0]


@pytest.mark.parametrize(
    "text",
    [
        "nope",
        "[]",
        json.dumps({"metadata": {}, "states": {}}),
        json.dumps({"metadata": {}, "states": [{"fov": "wide"}]}),
    ],
)
def test_load_session_document_rejects_bad_input(text: str) -> None:
    with pytest.raises(MalformedSnapshotError):
        load_session_document(text)
