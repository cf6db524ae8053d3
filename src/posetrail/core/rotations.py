from __future__ import annotations

import numpy as np


def as_vec3(v: np.ndarray | tuple[float, float, float] | list[float]) -> np.ndarray:
    out = np.asarray(v, dtype=np.float64).reshape(3)
    if not np.all(np.isfinite(out)):
        raise ValueError(f"Expected a finite 3-vector, got {out.tolist()}")
    return out.copy()


def as_quat(q: np.ndarray | tuple[float, float, float, float] | list[float]) -> np.ndarray:
    out = np.asarray(q, dtype=np.float64).reshape(4)
    if not np.all(np.isfinite(out)):
        raise ValueError(f"Expected a finite xyzw quaternion, got {out.tolist()}")
    if float(np.linalg.norm(out)) < 1e-12:
        raise ValueError("Quaternion norm is too close to zero")
    return out.copy()


def quat_xyzw_to_matrix(
    q_xyzw: tuple[float, float, float, float] | list[float] | np.ndarray,
) -> np.ndarray:
    q = np.asarray(q_xyzw, dtype=np.float64).reshape(4)
    n = float(np.linalg.norm(q))
    if n < 1e-12:
        raise ValueError("Quaternion norm is too close to zero")
    x, y, z, w = (q / n).tolist()
    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z
    return np.array(
        [
            [1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz), 2.0 * (xz + wy)],
            [2.0 * (xy + wz), 1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx)],
            [2.0 * (xz - wy), 2.0 * (yz + wx), 1.0 - 2.0 * (xx + yy)],
        ],
        dtype=np.float64,
    )


def euler_xyz_from_quat(
    q_xyzw: tuple[float, float, float, float] | list[float] | np.ndarray,
) -> tuple[float, float, float]:
    """Intrinsic XYZ Euler angles (radians), matching three.js `Euler.setFromQuaternion`."""
    m = quat_xyzw_to_matrix(q_xyzw)
    m13 = float(np.clip(m[0, 2], -1.0, 1.0))
    y = float(np.arcsin(m13))
    if abs(m13) < 0.9999999:
        x = float(np.arctan2(-m[1, 2], m[2, 2]))
        z = float(np.arctan2(-m[0, 1], m[0, 0]))
    else:
        # Gimbal lock: fold the remaining rotation into x.
        x = float(np.arctan2(m[2, 1], m[1, 1]))
        z = 0.0
    return x, y, z


def quat_from_euler_xyz(
    euler: tuple[float, float, float] | list[float] | np.ndarray,
) -> tuple[float, float, float, float]:
    ex, ey, ez = as_vec3(euler).tolist()
    c1, c2, c3 = np.cos(ex / 2.0), np.cos(ey / 2.0), np.cos(ez / 2.0)
    s1, s2, s3 = np.sin(ex / 2.0), np.sin(ey / 2.0), np.sin(ez / 2.0)
    return (
        float(s1 * c2 * c3 + c1 * s2 * s3),
        float(c1 * s2 * c3 - s1 * c2 * s3),
        float(c1 * c2 * s3 + s1 * s2 * c3),
        float(c1 * c2 * c3 - s1 * s2 * s3),
    )


def pose_matrix(
    position: tuple[float, float, float] | list[float] | np.ndarray,
    rotation_xyzw: tuple[float, float, float, float] | list[float] | np.ndarray,
) -> np.ndarray:
    t = np.eye(4, dtype=np.float64)
    t[:3, :3] = quat_xyzw_to_matrix(rotation_xyzw)
    p = np.asarray(position, dtype=np.float64).reshape(3)
    t[:3, 3] = p
    return t


def perspective_matrix(fov_deg: float, aspect: float, near: float, far: float) -> np.ndarray:
    if not (0.0 < float(fov_deg) < 180.0):
        raise ValueError(f"fov must be in (0, 180) degrees, got {fov_deg}")
    if near <= 0 or far <= near:
        raise ValueError(f"Invalid clip planes near={near} far={far}")
    f = 1.0 / np.tan(np.radians(float(fov_deg)) / 2.0)
    return np.array(
        [
            [f / float(aspect), 0.0, 0.0, 0.0],
            [0.0, f, 0.0, 0.0],
            [0.0, 0.0, (far + near) / (near - far), 2.0 * far * near / (near - far)],
            [0.0, 0.0, -1.0, 0.0],
        ],
        dtype=np.float64,
    )
