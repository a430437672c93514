"""
Landmark triangulation from calibrated cameras with known poses.

Layers:
- `solve_point3`: DLT, optional Levenberg-Marquardt refinement, optional cheirality
  check; returns a `TriangulationResult` instead of raising on geometric failures
- `triangulate_point3`: same pipeline, exception API (`UnderconstrainedError`,
  `CheiralityError`)
- `triangulate_safe`: adds quality gates (landmark distance, mean reprojection error)

Cameras are duck-typed: anything exposing `pose()`, `calibration()` (with `K()`) and
`project(point)` works, e.g. `PinholeCamera`.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np

from landmarktri.api.results import BehindCamera, Degenerate, TriangulationResult, Valid
from landmarktri.core.dlt import solve_dlt, triangulation_matrix
from landmarktri.core.geometry import (
    PinholeCalibration,
    PinholeCamera,
    Pose3,
    as_measurements,
    as_point3,
    projection_matrix,
)
from landmarktri.errors import CheiralityError, DimensionMismatchError, RefinementError, UnderconstrainedError
from landmarktri.optim.graph import LANDMARK_KEY, optimize as optimize_graph, triangulation_graph
from landmarktri.params import TriangulationParameters

logger = logging.getLogger(__name__)


def _cameras_from_poses(poses: Sequence[Pose3], calibration: PinholeCalibration) -> list[PinholeCamera]:
    return [PinholeCamera(pose, calibration) for pose in poses]


def _check_sizes(cameras: Sequence[Any], measurements: object) -> np.ndarray:
    z = as_measurements(measurements)
    if len(cameras) != z.shape[0]:
        raise DimensionMismatchError(f"got {len(cameras)} cameras but {z.shape[0]} measurements")
    return z


def in_front_of_all(cameras: Sequence[Any], point: np.ndarray) -> bool:
    """True when `point` has strictly positive depth in every camera."""
    return all(float(camera.pose().transform_to(point)[2]) > 0.0 for camera in cameras)


def reprojection_errors(cameras: Sequence[Any], measurements: object, point: np.ndarray) -> np.ndarray:
    """Per-camera pixel distance between projection and measurement, shape (N,)."""
    z = _check_sizes(cameras, measurements)
    point = as_point3(point)
    return np.array(
        [float(np.linalg.norm(np.asarray(cam.project(point)).reshape(2) - zi)) for cam, zi in zip(cameras, z)],
        dtype=np.float64,
    )


def triangulate_nonlinear(
    cameras: Sequence[Any],
    measurements: object,
    initial_estimate: np.ndarray,
    max_nfev: int | None = None,
) -> np.ndarray:
    """
    Refine `initial_estimate` by minimizing the reprojection error in all cameras
    (unit noise). Raises RefinementError if the optimizer fails.
    """
    graph, values = triangulation_graph(cameras, measurements, LANDMARK_KEY, initial_estimate)
    return optimize_graph(graph, values, LANDMARK_KEY, max_nfev=max_nfev)


def triangulate_nonlinear_from_poses(
    poses: Sequence[Pose3],
    calibration: PinholeCalibration,
    measurements: object,
    initial_estimate: np.ndarray,
    max_nfev: int | None = None,
) -> np.ndarray:
    return triangulate_nonlinear(_cameras_from_poses(poses, calibration), measurements, initial_estimate, max_nfev)


def solve_point3(
    cameras: Sequence[Any],
    measurements: object,
    rank_tol: float = 1.0,
    optimize: bool = False,
    check_cheirality: bool = True,
    max_nfev: int | None = None,
) -> TriangulationResult:
    """
    DLT triangulation from N >= 2 cameras, optionally refined and checked for cheirality.

    Returns Degenerate for fewer than two cameras or a rank-deficient system, and
    BehindCamera when `check_cheirality` is set and some camera sees the point at
    non-positive depth. Raises DimensionMismatchError if the sizes differ;
    RefinementError from the optimizer propagates.
    """
    z = _check_sizes(cameras, measurements)
    if len(cameras) < 2:
        return Degenerate()

    Ps = [projection_matrix(cam.pose(), cam.calibration()) for cam in cameras]
    sol = solve_dlt(triangulation_matrix(Ps, z), rank_tol)
    if sol.rank < 3 or sol.at_infinity:
        logger.debug("DLT underconstrained: rank=%d ray_singular_values=%s", sol.rank, sol.ray_singular_values)
        return Degenerate()
    point = sol.point()
    if not np.all(np.isfinite(point)):
        return Degenerate()

    if optimize:
        point = triangulate_nonlinear(cameras, z, point, max_nfev=max_nfev)

    if check_cheirality and not in_front_of_all(cameras, point):
        return BehindCamera()
    return Valid(point)


def solve_point3_from_poses(
    poses: Sequence[Pose3],
    calibration: PinholeCalibration,
    measurements: object,
    rank_tol: float = 1.0,
    optimize: bool = False,
    check_cheirality: bool = True,
    max_nfev: int | None = None,
) -> TriangulationResult:
    return solve_point3(
        _cameras_from_poses(poses, calibration),
        measurements,
        rank_tol=rank_tol,
        optimize=optimize,
        check_cheirality=check_cheirality,
        max_nfev=max_nfev,
    )


def triangulate_point3(
    cameras: Sequence[Any],
    measurements: object,
    rank_tol: float = 1.0,
    optimize: bool = False,
    check_cheirality: bool = True,
    max_nfev: int | None = None,
) -> np.ndarray:
    """
    Triangulate a landmark from at least two cameras with the DLT; checks that the
    result is in front of all cameras (if requested) but performs no other quality
    checks.

    Raises UnderconstrainedError, CheiralityError, RefinementError or
    DimensionMismatchError.
    """
    result = solve_point3(
        cameras,
        measurements,
        rank_tol=rank_tol,
        optimize=optimize,
        check_cheirality=check_cheirality,
        max_nfev=max_nfev,
    )
    if isinstance(result, Valid):
        return result.point.copy()
    if isinstance(result, BehindCamera):
        raise CheiralityError()
    raise UnderconstrainedError()


def triangulate_point3_from_poses(
    poses: Sequence[Pose3],
    calibration: PinholeCalibration,
    measurements: object,
    rank_tol: float = 1.0,
    optimize: bool = False,
    check_cheirality: bool = True,
    max_nfev: int | None = None,
) -> np.ndarray:
    """Variant of `triangulate_point3` for cameras sharing one calibration."""
    return triangulate_point3(
        _cameras_from_poses(poses, calibration),
        measurements,
        rank_tol=rank_tol,
        optimize=optimize,
        check_cheirality=check_cheirality,
        max_nfev=max_nfev,
    )


def triangulate_safe(
    cameras: Sequence[Any],
    measurements: object,
    params: TriangulationParameters | None = None,
) -> TriangulationResult:
    """
    Triangulate with extensive checking of the outcome.

    Degenerate: fewer than two cameras, rank-deficient DLT, refinement failure,
    landmark farther than `landmark_distance_threshold` from some camera, or mean
    reprojection error above `dynamic_outlier_rejection_threshold`.
    BehindCamera: non-positive depth in some camera.

    Per-camera checks run in input order and stop at the first violation; the
    reprojection gate runs once all cameras passed.
    """
    if params is None:
        params = TriangulationParameters()
    m = len(cameras)
    # A single view is uninformative.
    if m < 2:
        logger.debug("degenerate: %d camera(s)", m)
        return Degenerate()
    z = _check_sizes(cameras, measurements)

    try:
        result = solve_point3(
            cameras,
            z,
            rank_tol=params.rank_tolerance,
            optimize=params.enable_epi,
            check_cheirality=params.solver_cheirality,
            max_nfev=params.max_refinement_evaluations,
        )
    except RefinementError as exc:
        logger.warning("degenerate: refinement failed (%s)", exc)
        return Degenerate()

    if not isinstance(result, Valid):
        logger.debug("triangulation rejected: %s", result.status)
        return result
    point = result.point

    total_reproj_error = 0.0
    for i, (camera, zi) in enumerate(zip(cameras, z)):
        pose = camera.pose()
        if params.checks_distance:
            distance = float(np.linalg.norm(pose.translation() - point))
            if distance > params.landmark_distance_threshold:
                logger.debug(
                    "degenerate: landmark %.6g from camera %d (threshold %.6g)",
                    distance,
                    i,
                    params.landmark_distance_threshold,
                )
                return Degenerate()
        if not params.solver_cheirality and float(pose.transform_to(point)[2]) <= 0.0:
            logger.debug("behind camera %d", i)
            return BehindCamera()
        if params.rejects_outliers:
            reprojection = np.asarray(camera.project(point), dtype=np.float64).reshape(2) - zi
            total_reproj_error += float(np.linalg.norm(reprojection))

    if params.rejects_outliers:
        mean_error = total_reproj_error / m
        # NaN (point on a camera plane) counts as failing the gate.
        if not mean_error <= params.dynamic_outlier_rejection_threshold:
            logger.debug(
                "degenerate: mean reprojection error %.6g (threshold %.6g)",
                mean_error,
                params.dynamic_outlier_rejection_threshold,
            )
            return Degenerate()

    return result


def triangulate_safe_from_poses(
    poses: Sequence[Pose3],
    calibration: PinholeCalibration,
    measurements: object,
    params: TriangulationParameters | None = None,
) -> TriangulationResult:
    return triangulate_safe(_cameras_from_poses(poses, calibration), measurements, params)
