from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Mapping

from .errors import MalformedSnapshotError

logger = logging.getLogger(__name__)

Vec3 = tuple[float, float, float]
Quat = tuple[float, float, float, float]

_VEC3_AXES = ("x", "y", "z")
_QUAT_AXES = ("x", "y", "z", "w")


@dataclass(frozen=True)
class PoseSnapshot:
    """One captured camera pose.

    Every field is optional so partial records (hand-written presets, older files)
    can be restored field by field. `capture()` always fills all of them.
    """

    timestamp: int | None = None
    position: Vec3 | None = None
    rotation: Vec3 | None = None
    quaternion: Quat | None = None
    target: Vec3 | None = None
    fov: float | None = None
    up: Vec3 | None = None
    key: str | None = None

    def with_key(self, key: str) -> "PoseSnapshot":
        return replace(self, key=str(key))


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {type(value).__name__}")
    out = float(value)
    if not math.isfinite(out):
        raise ValueError(f"expected a finite number, got {value!r}")
    return out


def _components(value: Any, axes: tuple[str, ...]) -> tuple[float, ...]:
    if isinstance(value, Mapping):
        missing = [a for a in axes if a not in value]
        if missing:
            raise KeyError(f"missing components {missing}")
        return tuple(_number(value[a]) for a in axes)
    if isinstance(value, (list, tuple)):
        if len(value) != len(axes):
            raise ValueError(f"expected {len(axes)} components, got {len(value)}")
        return tuple(_number(v) for v in value)
    raise TypeError(f"expected an object or array, got {type(value).__name__}")


def _orientation(value: Any) -> tuple[float, ...]:
    q = _components(value, _QUAT_AXES)
    n = math.sqrt(sum(c * c for c in q))
    if n < 1e-12:
        raise ValueError("quaternion norm is too close to zero")
    # Unit input passes through untouched so captured poses round-trip exactly.
    if abs(n - 1.0) > 1e-9:
        q = tuple(c / n for c in q)
    return q


def _vec3_to_dict(v: Vec3) -> dict[str, float]:
    return {"x": float(v[0]), "y": float(v[1]), "z": float(v[2])}


def snapshot_to_dict(snapshot: PoseSnapshot) -> dict[str, Any]:
    """Wire form of a snapshot. Absent fields are omitted."""
    out: dict[str, Any] = {}
    if snapshot.timestamp is not None:
        out["timestamp"] = int(snapshot.timestamp)
    if snapshot.position is not None:
        out["position"] = _vec3_to_dict(snapshot.position)
    if snapshot.rotation is not None:
        out["rotation"] = _vec3_to_dict(snapshot.rotation)
    if snapshot.quaternion is not None:
        q = snapshot.quaternion
        out["quaternion"] = {"x": float(q[0]), "y": float(q[1]), "z": float(q[2]), "w": float(q[3])}
    if snapshot.target is not None:
        out["target"] = _vec3_to_dict(snapshot.target)
    if snapshot.fov is not None:
        out["fov"] = float(snapshot.fov)
    if snapshot.up is not None:
        out["up"] = _vec3_to_dict(snapshot.up)
    if snapshot.key is not None:
        out["key"] = snapshot.key
    return out


def snapshot_from_dict(data: Mapping[str, Any], *, strict: bool = False) -> PoseSnapshot:
    """Parse a wire-form snapshot.

    With ``strict=False`` (the default) a malformed field is logged and left absent,
    so the remaining fields can still be restored. With ``strict=True`` the first
    malformed field raises `MalformedSnapshotError`.
    """

    if not isinstance(data, Mapping):
        raise MalformedSnapshotError(f"Camera state must be a JSON object, got {type(data).__name__}")

    fields: dict[str, Any] = {}

    def _take(name: str, parse: Any) -> None:
        if name not in data or data[name] is None:
            return
        try:
            fields[name] = parse(data[name])
        except (TypeError, ValueError, KeyError) as e:
            if strict:
                raise MalformedSnapshotError(f"Invalid camera state field {name!r}: {e}") from e
            logger.warning("Ignoring malformed camera state field %r: %s", name, e)

    _take("timestamp", lambda v: int(_number(v)))
    _take("position", lambda v: _components(v, _VEC3_AXES))
    _take("rotation", lambda v: _components(v, _VEC3_AXES))
    _take("quaternion", _orientation)
    _take("target", lambda v: _components(v, _VEC3_AXES))
    _take("fov", _number)
    _take("up", lambda v: _components(v, _VEC3_AXES))
    if data.get("key") is not None:
        fields["key"] = str(data["key"])

    return PoseSnapshot(**fields)
