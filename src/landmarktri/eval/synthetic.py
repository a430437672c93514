from __future__ import annotations

import json

import numpy as np

from landmarktri.api.results import Valid
from landmarktri.api.triangulation import reprojection_errors, triangulate_safe
from landmarktri.core.geometry import PinholeCalibration, PinholeCamera
from landmarktri.params import TriangulationParameters

DEFAULT_CALIBRATION = PinholeCalibration(fx=800.0, fy=800.0, cx=320.0, cy=240.0)


def camera_ring(
    n_cameras: int,
    radius: float = 10.0,
    height: float = 2.0,
    calibration: PinholeCalibration = DEFAULT_CALIBRATION,
) -> list[PinholeCamera]:
    """Cameras evenly spread on a horizontal circle, all looking at the origin (z up)."""
    if n_cameras < 1:
        raise ValueError("n_cameras must be >= 1")
    angles = np.linspace(0.0, 2.0 * np.pi, int(n_cameras), endpoint=False)
    up = np.array([0.0, 0.0, 1.0])
    target = np.zeros(3)
    return [
        PinholeCamera.lookat(np.array([radius * np.cos(a), radius * np.sin(a), height]), target, up, calibration)
        for a in angles
    ]


def eval_synthetic(
    n_trials: int = 200,
    n_cameras: int = 3,
    noise_px: float = 0.5,
    seed: int = 0,
    params: TriangulationParameters | None = None,
    box_half_size: float = 1.0,
) -> dict[str, float]:
    """
    Triangulate random landmarks seen by a camera ring with Gaussian pixel noise and
    summarize classification counts and accuracy.
    """
    if params is None:
        params = TriangulationParameters()
    rng = np.random.default_rng(int(seed))
    cameras = camera_ring(int(n_cameras))

    counts = {"valid": 0, "degenerate": 0, "behind_camera": 0}
    e3d: list[float] = []
    ereproj: list[float] = []
    for _ in range(int(n_trials)):
        landmark = rng.uniform(-box_half_size, box_half_size, size=3)
        z = np.stack([cam.project(landmark) for cam in cameras], axis=0)
        z = z + rng.normal(scale=float(noise_px), size=z.shape)
        result = triangulate_safe(cameras, z, params)
        counts[result.status] += 1
        if isinstance(result, Valid):
            e3d.append(float(np.linalg.norm(result.point - landmark)))
            ereproj.append(float(np.mean(reprojection_errors(cameras, z, result.point))))

    e = np.asarray(e3d, dtype=np.float64)
    r = np.asarray(ereproj, dtype=np.float64)
    return {
        "n_trials": float(n_trials),
        "n_cameras": float(n_cameras),
        "noise_px": float(noise_px),
        "n_valid": float(counts["valid"]),
        "n_degenerate": float(counts["degenerate"]),
        "n_behind_camera": float(counts["behind_camera"]),
        "triang_rms": float(np.sqrt(np.mean(e**2))) if e.size else float("nan"),
        "triang_p95": float(np.quantile(e, 0.95)) if e.size else float("nan"),
        "reproj_mean_px": float(np.mean(r)) if r.size else float("nan"),
    }


def print_synthetic_report(stats: dict[str, float]) -> None:
    print(json.dumps(stats, indent=None, sort_keys=True))
