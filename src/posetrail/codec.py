from __future__ import annotations

import json
import logging
import math
import time
from typing import Any, Callable, Mapping

from .core.errors import MalformedSnapshotError, MissingDependencyError
from .core.snapshot import PoseSnapshot, snapshot_from_dict, snapshot_to_dict
from .io.store import KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)

NAMED_STATES_KEY = "cameraStates"


def now_ms() -> int:
    return int(time.time() * 1000)


class PoseCodec:
    """Capture and restore the pose of a camera/controls pair.

    `camera` must expose ``position``, ``quaternion``, ``rotation``, ``up``, ``fov``
    and ``update_projection_matrix()``; `controls` must expose ``target`` and
    ``update()``. `PerspectiveCamera` and `OrbitControls` from
    `posetrail.core.scene` satisfy both.

    Named snapshots are kept in `store` under a single key, as one JSON object
    mapping names to snapshots. Store failures are logged and otherwise ignored.
    """

    def __init__(
        self,
        camera: Any,
        controls: Any,
        *,
        store: KeyValueStore | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if camera is None:
            raise MissingDependencyError("camera is required for PoseCodec")
        if controls is None:
            raise MissingDependencyError("controls is required for PoseCodec")
        self.camera = camera
        self.controls = controls
        self.store: KeyValueStore = store if store is not None else MemoryStore()
        self._clock = clock or now_ms

    def capture(self, timestamp: int | None = None) -> PoseSnapshot:
        cam = self.camera
        pos = cam.position
        rot = cam.rotation
        q = cam.quaternion
        up = cam.up
        tgt = self.controls.target
        return PoseSnapshot(
            timestamp=int(timestamp) if timestamp is not None else int(self._clock()),
            position=(float(pos[0]), float(pos[1]), float(pos[2])),
            rotation=(float(rot[0]), float(rot[1]), float(rot[2])),
            quaternion=(float(q[0]), float(q[1]), float(q[2]), float(q[3])),
            target=(float(tgt[0]), float(tgt[1]), float(tgt[2])),
            fov=float(cam.fov),
            up=(float(up[0]), float(up[1]), float(up[2])),
        )

    def restore(self, snapshot: PoseSnapshot | Mapping[str, Any] | None) -> None:
        """Apply whatever fields `snapshot` carries to the camera and controls. Never raises.

        Fields that are absent or unusable are left as they are and logged. In
        particular a zero-length quaternion falls back to `rotation`, and an fov
        outside the open interval (0, 180) degrees is ignored instead of applied.
        """
        if snapshot is None:
            logger.warning("No camera state provided to restore")
            return
        if not isinstance(snapshot, PoseSnapshot):
            try:
                snapshot = snapshot_from_dict(snapshot)
            except MalformedSnapshotError as e:
                logger.warning("Cannot restore camera state: %s", e)
                return

        cam = self.camera
        if snapshot.position is not None:
            cam.position = snapshot.position

        # Quaternion wins; Euler angles are only a fallback for older records.
        oriented = False
        if snapshot.quaternion is not None:
            try:
                cam.quaternion = snapshot.quaternion
                oriented = True
            except ValueError as e:
                logger.warning("Ignoring unusable quaternion %r: %s", snapshot.quaternion, e)
        if not oriented and snapshot.rotation is not None:
            try:
                cam.rotation = snapshot.rotation
            except ValueError as e:
                logger.warning("Ignoring unusable rotation %r: %s", snapshot.rotation, e)

        if snapshot.target is not None:
            self.controls.target = snapshot.target

        if snapshot.fov is not None:
            if 0.0 < snapshot.fov < 180.0 and math.isfinite(snapshot.fov):
                cam.fov = float(snapshot.fov)
                cam.update_projection_matrix()
            else:
                logger.warning("Ignoring out-of-range fov %r", snapshot.fov)

        if snapshot.up is not None:
            cam.up = snapshot.up

        self.controls.update()
        logger.debug("Camera state restored: %s", snapshot)

    def serialize(self, timestamp: int | None = None) -> str:
        return json.dumps(snapshot_to_dict(self.capture(timestamp)), indent=2)

    def deserialize(self, text: str | bytes) -> PoseSnapshot:
        """Parse `text` and restore it. Raises `MalformedSnapshotError` on bad JSON."""
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise MalformedSnapshotError(f"Failed to parse camera state JSON: {e}") from e
        snapshot = snapshot_from_dict(data)
        self.restore(snapshot)
        return snapshot

    # Named snapshots

    def _read_named(self) -> dict[str, Any]:
        raw = self.store.get_item(NAMED_STATES_KEY)
        if not raw:
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"{NAMED_STATES_KEY!r} does not hold a JSON object")
        return data

    def save(self, key: str, timestamp: int | None = None) -> PoseSnapshot:
        snapshot = self.capture(timestamp).with_key(key)
        try:
            states = self._read_named()
            states[str(key)] = snapshot_to_dict(snapshot)
            self.store.set_item(NAMED_STATES_KEY, json.dumps(states))
        except (OSError, ValueError) as e:
            logger.warning("Failed to save camera state %r: %s", key, e)
        return snapshot

    def load(self, key: str) -> PoseSnapshot | None:
        snapshot = self.list_all().get(str(key))
        if snapshot is None:
            return None
        self.restore(snapshot)
        return snapshot

    def delete(self, key: str) -> None:
        try:
            states = self._read_named()
            if states.pop(str(key), None) is not None:
                self.store.set_item(NAMED_STATES_KEY, json.dumps(states))
        except (OSError, ValueError) as e:
            logger.warning("Failed to delete camera state %r: %s", key, e)

    def clear(self) -> None:
        try:
            self.store.remove_item(NAMED_STATES_KEY)
        except OSError as e:
            logger.warning("Failed to clear saved camera states: %s", e)

    def list_all(self) -> dict[str, PoseSnapshot]:
        try:
            states = self._read_named()
        except (OSError, ValueError) as e:
            logger.warning("Failed to read saved camera states: %s", e)
            return {}

        out: dict[str, PoseSnapshot] = {}
        for name, record in states.items():
            if not isinstance(record, dict):
                logger.warning("Skipping saved camera state %r: not an object", name)
                continue
            out[str(name)] = snapshot_from_dict(record)
        return out
