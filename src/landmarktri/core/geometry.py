"""
Camera geometry used by the triangulation routines.

Conventions:
- a `Pose3` maps camera-local coordinates to world coordinates: X_w = R X_c + t,
  so `translation()` is the camera center in the world frame
- camera frame: x right, y down, z along the optical axis (points in front have z > 0)
- measurements are pixel coordinates (u, v) produced by `PinholeCalibration.uncalibrate`
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from landmarktri.core.distortion import BrownDistortion

_ROTATION_TOL = 1e-6
_MIN_DEPTH = 1e-12


def as_point3(p: object) -> np.ndarray:
    p = np.asarray(p, dtype=np.float64)
    if p.shape != (3,):
        p = p.reshape(-1)
        if p.size != 3:
            raise ValueError(f"expected a 3D point, got {p.size} values")
    return p


def as_measurements(z: object) -> np.ndarray:
    z = np.asarray(z, dtype=np.float64)
    if z.size == 0:
        return z.reshape(0, 2)
    if z.ndim != 2 or z.shape[1] != 2:
        z = z.reshape(-1)
        if z.size % 2 != 0:
            raise ValueError("measurements must be (u, v) pairs")
        z = z.reshape(-1, 2)
    return z


@dataclass(frozen=True)
class Pose3:
    """Rigid transform (camera-to-world)."""

    R: np.ndarray  # (3,3)
    t: np.ndarray  # (3,)

    def __post_init__(self) -> None:
        R = np.asarray(self.R, dtype=np.float64).reshape(3, 3)
        t = np.asarray(self.t, dtype=np.float64).reshape(3)
        if not np.all(np.isfinite(R)) or not np.all(np.isfinite(t)):
            raise ValueError("pose contains non-finite values")
        if np.max(np.abs(R.T @ R - np.eye(3))) > _ROTATION_TOL or np.linalg.det(R) <= 0.0:
            raise ValueError("R must be a proper rotation matrix")
        object.__setattr__(self, "R", R)
        object.__setattr__(self, "t", t)

    @classmethod
    def identity(cls) -> "Pose3":
        return cls(R=np.eye(3), t=np.zeros(3))

    @classmethod
    def from_rotvec(cls, rvec: np.ndarray, t: np.ndarray) -> "Pose3":
        from scipy.spatial.transform import Rotation as Rot  # type: ignore

        rvec = np.asarray(rvec, dtype=np.float64).reshape(3)
        return cls(R=Rot.from_rotvec(rvec).as_matrix(), t=t)

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> "Pose3":
        T = np.asarray(T, dtype=np.float64).reshape(4, 4)
        if not np.allclose(T[3], [0.0, 0.0, 0.0, 1.0]):
            raise ValueError("last row of a homogeneous transform must be [0,0,0,1]")
        return cls(R=T[:3, :3], t=T[:3, 3])

    def rotation(self) -> np.ndarray:
        return self.R.copy()

    def translation(self) -> np.ndarray:
        return self.t.copy()

    def matrix(self) -> np.ndarray:
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.R
        T[:3, 3] = self.t
        return T

    def inverse(self) -> "Pose3":
        return Pose3(R=self.R.T, t=-self.R.T @ self.t)

    def compose(self, other: "Pose3") -> "Pose3":
        return Pose3(R=self.R @ other.R, t=self.R @ other.t + self.t)

    def transform_from(self, p: np.ndarray) -> np.ndarray:
        """Local -> world. Accepts (3,) or (N,3)."""
        p = np.asarray(p, dtype=np.float64)
        return p @ self.R.T + self.t

    def transform_to(self, p: np.ndarray) -> np.ndarray:
        """World -> local. Accepts (3,) or (N,3)."""
        p = np.asarray(p, dtype=np.float64)
        return (p - self.t) @ self.R


@dataclass(frozen=True)
class PinholeCalibration:
    """
    Intrinsics: focal lengths, principal point, skew and optional Brown distortion.

    `K()` only carries the linear part; the linear DLT therefore ignores distortion
    while nonlinear refinement (which goes through `uncalibrate`) accounts for it.
    """

    fx: float
    fy: float
    cx: float
    cy: float
    skew: float = 0.0
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0

    def __post_init__(self) -> None:
        values = (self.fx, self.fy, self.cx, self.cy, self.skew, self.k1, self.k2, self.p1, self.p2, self.k3)
        if not all(np.isfinite(float(v)) for v in values):
            raise ValueError("calibration contains non-finite values")
        if abs(float(self.fx)) < 1e-12 or abs(float(self.fy)) < 1e-12:
            raise ValueError("fx and fy must be non-zero")

    @classmethod
    def unit(cls) -> "PinholeCalibration":
        """K = I: measurements are normalized image coordinates."""
        return cls(fx=1.0, fy=1.0, cx=0.0, cy=0.0)

    def K(self) -> np.ndarray:
        return np.array(
            [
                [float(self.fx), float(self.skew), float(self.cx)],
                [0.0, float(self.fy), float(self.cy)],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    def dist(self) -> np.ndarray:
        return self.distortion().coefficients()

    def distortion(self) -> BrownDistortion:
        return BrownDistortion(k1=self.k1, k2=self.k2, p1=self.p1, p2=self.p2, k3=self.k3)

    def uncalibrate(self, xy: np.ndarray) -> np.ndarray:
        """Normalized (...,2) -> pixels (...,2)."""
        xy_d = self.distortion().distort(xy)
        xd = xy_d[..., 0]
        yd = xy_d[..., 1]
        u = self.fx * xd + self.skew * yd + self.cx
        v = self.fy * yd + self.cy
        return np.stack([u, v], axis=-1)

    def calibrate(self, uv: np.ndarray) -> np.ndarray:
        """Pixels (...,2) -> normalized (...,2)."""
        uv = np.asarray(uv, dtype=np.float64)
        yd = (uv[..., 1] - self.cy) / self.fy
        xd = (uv[..., 0] - self.cx - self.skew * yd) / self.fx
        return self.distortion().undistort(np.stack([xd, yd], axis=-1))


def projection_matrix(pose: Pose3, calibration: PinholeCalibration) -> np.ndarray:
    """P = K [R|t]^-1, restricted to its top 3x4 block."""
    return calibration.K() @ pose.inverse().matrix()[:3, :4]


class PinholeCamera:
    """A calibrated camera at a known pose."""

    def __init__(self, pose: Pose3, calibration: PinholeCalibration | None = None) -> None:
        self._pose = pose
        self._calibration = PinholeCalibration.unit() if calibration is None else calibration

    def __repr__(self) -> str:
        return f"PinholeCamera(pose={self._pose!r}, calibration={self._calibration!r})"

    @classmethod
    def lookat(
        cls,
        eye: np.ndarray,
        target: np.ndarray,
        up: np.ndarray,
        calibration: PinholeCalibration | None = None,
    ) -> "PinholeCamera":
        """
        Camera at `eye` with its optical axis through `target`; image y points along -up.
        """
        eye = as_point3(eye)
        zc = as_point3(target) - eye
        n = float(np.linalg.norm(zc))
        if n < 1e-12:
            raise ValueError("eye and target coincide")
        zc = zc / n
        xc = np.cross(-as_point3(up), zc)
        n = float(np.linalg.norm(xc))
        if n < 1e-12:
            raise ValueError("up vector is parallel to the viewing direction")
        xc = xc / n
        yc = np.cross(zc, xc)
        return cls(Pose3(R=np.stack([xc, yc, zc], axis=1), t=eye), calibration)

    def pose(self) -> Pose3:
        return self._pose

    def calibration(self) -> PinholeCalibration:
        return self._calibration

    def projection_matrix(self) -> np.ndarray:
        return projection_matrix(self._pose, self._calibration)

    def depth(self, point: np.ndarray) -> np.ndarray | float:
        """Signed depth of world point(s) along the optical axis."""
        z = self._pose.transform_to(point)[..., 2]
        return float(z) if np.ndim(z) == 0 else z

    def project(self, point: np.ndarray) -> np.ndarray:
        """
        World point(s) (3,) or (N,3) -> pixels (2,) or (N,2).

        Points at (near-)zero depth map to NaN. Points behind the camera are projected
        like any other; callers decide what to do with them.
        """
        p_cam = self._pose.transform_to(point)
        z = p_cam[..., 2]
        good = np.isfinite(z) & (np.abs(z) > _MIN_DEPTH)
        safe_z = np.where(good, z, 1.0)
        xy = p_cam[..., :2] / safe_z[..., None]
        uv = self._calibration.uncalibrate(xy)
        return np.where(good[..., None], uv, np.nan)

    def backproject(self, uv: np.ndarray, depth: float) -> np.ndarray:
        """Pixel + depth -> world point."""
        xy = self._calibration.calibrate(np.asarray(uv, dtype=np.float64).reshape(2))
        p_cam = np.array([xy[0] * depth, xy[1] * depth, depth], dtype=np.float64)
        return self._pose.transform_from(p_cam)
