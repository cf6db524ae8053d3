from __future__ import annotations

from typing import Any

import numpy as np

from .events import EventSource
from .rotations import (
    as_quat,
    as_vec3,
    euler_xyz_from_quat,
    perspective_matrix,
    pose_matrix,
    quat_from_euler_xyz,
)


class PerspectiveCamera:
    """Viewer camera pose.

    Orientation is stored as an xyzw quaternion. `rotation` is the XYZ Euler view of
    the same orientation: reading it converts from the quaternion, assigning it
    replaces the quaternion.
    """

    def __init__(
        self,
        fov: float = 45.0,
        aspect: float = 1.0,
        near: float = 0.1,
        far: float = 1000.0,
        *,
        position: tuple[float, float, float] = (0.0, 0.0, 5.0),
        quaternion: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0),
        up: tuple[float, float, float] = (0.0, 1.0, 0.0),
    ) -> None:
        self.fov = float(fov)
        self.aspect = float(aspect)
        self.near = float(near)
        self.far = float(far)
        self._position = as_vec3(position)
        self._quaternion = as_quat(quaternion)
        self._up = as_vec3(up)
        self.projection_matrix = np.eye(4, dtype=np.float64)
        self.matrix_world = np.eye(4, dtype=np.float64)
        self.update_projection_matrix()
        self.update_matrix_world()

    @property
    def position(self) -> np.ndarray:
        return self._position

    @position.setter
    def position(self, value: Any) -> None:
        self._position = as_vec3(value)

    @property
    def quaternion(self) -> np.ndarray:
        return self._quaternion

    @quaternion.setter
    def quaternion(self, value: Any) -> None:
        self._quaternion = as_quat(value)

    @property
    def rotation(self) -> tuple[float, float, float]:
        return euler_xyz_from_quat(self._quaternion)

    @rotation.setter
    def rotation(self, value: Any) -> None:
        self._quaternion = as_quat(quat_from_euler_xyz(value))

    @property
    def up(self) -> np.ndarray:
        return self._up

    @up.setter
    def up(self, value: Any) -> None:
        self._up = as_vec3(value)

    def update_projection_matrix(self) -> None:
        self.projection_matrix = perspective_matrix(self.fov, self.aspect, self.near, self.far)

    def update_matrix_world(self) -> None:
        self.matrix_world = pose_matrix(self._position, self._quaternion)


class OrbitControls(EventSource):
    """Orbit-style controls state: the orbit target plus the camera it drives.

    Gesture handling lives in the viewer; this object only carries the target and
    notifies listeners with a ``"change"`` event whenever the view is updated.
    """

    def __init__(
        self,
        camera: PerspectiveCamera,
        dom_element: Any = None,
        *,
        target: tuple[float, float, float] = (0.0, 0.0, 0.0),
    ) -> None:
        super().__init__()
        self.camera = camera
        self.dom_element = dom_element
        self._target = as_vec3(target)

    @property
    def target(self) -> np.ndarray:
        return self._target

    @target.setter
    def target(self, value: Any) -> None:
        self._target = as_vec3(value)

    def update(self) -> None:
        self.camera.update_matrix_world()
        self.dispatch("change", None)
