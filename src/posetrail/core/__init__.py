from __future__ import annotations

from .errors import (
    DeliveryError,
    MalformedFolderUrlError,
    MalformedSnapshotError,
    MissingDependencyError,
    PosetrailError,
)
from .events import EventSource
from .rotations import euler_xyz_from_quat, pose_matrix, quat_from_euler_xyz, quat_xyzw_to_matrix
from .scene import OrbitControls, PerspectiveCamera
from .snapshot import PoseSnapshot, snapshot_from_dict, snapshot_to_dict

__all__ = [
    "PosetrailError",
    "MissingDependencyError",
    "MalformedSnapshotError",
    "MalformedFolderUrlError",
    "DeliveryError",
    "EventSource",
    "PerspectiveCamera",
    "OrbitControls",
    "PoseSnapshot",
    "snapshot_to_dict",
    "snapshot_from_dict",
    "quat_xyzw_to_matrix",
    "euler_xyz_from_quat",
    "quat_from_euler_xyz",
    "pose_matrix",
]
