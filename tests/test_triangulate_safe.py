from __future__ import annotations

import logging
from types import SimpleNamespace

import numpy as np
import pytest

import landmarktri.api.triangulation as triangulation
from landmarktri.api.results import BehindCamera, Degenerate, Valid
from landmarktri.api.triangulation import triangulate_point3, triangulate_safe, triangulate_safe_from_poses
from landmarktri.core.geometry import PinholeCalibration, PinholeCamera, Pose3
from landmarktri.errors import DimensionMismatchError, RefinementError
from landmarktri.params import TriangulationParameters

CAL = PinholeCalibration(fx=500.0, fy=500.0, cx=320.0, cy=240.0)


def _at(x: float, y: float, z: float, cal: PinholeCalibration | None = None) -> PinholeCamera:
    return PinholeCamera(Pose3(R=np.eye(3), t=np.array([x, y, z])), cal)


def _scenario():
    cams = [_at(0.0, 0.0, 0.0), _at(2.0, 0.0, 0.0)]
    return cams, np.array([[0.2, 0.0], [-0.2, 0.0]])


def _behind_second_camera():
    # Landmark (1,0,5); the second camera at z=10 looks down +z and sees it behind.
    cams = [_at(0.0, 0.0, 0.0), _at(0.0, 0.0, 10.0)]
    return cams, np.array([[0.2, 0.0], [-0.2, 0.0]])


def test_valid_scenario():
    cams, z = _scenario()
    result = triangulate_safe(cams, z, TriangulationParameters(rank_tolerance=1.0))
    assert isinstance(result, Valid)
    assert np.linalg.norm(result.point - [1.0, 0.0, 5.0]) < 1e-6
    assert triangulate_safe(cams, z).valid()


def test_fewer_than_two_cameras_is_degenerate_without_svd(monkeypatch):
    def _fail(*args, **kwargs):
        raise AssertionError("SVD must not run")

    monkeypatch.setattr(triangulation, "solve_dlt", _fail)
    assert isinstance(triangulate_safe([_at(0.0, 0.0, 0.0)], [[0.1, 0.1]]), Degenerate)
    assert isinstance(triangulate_safe([], np.zeros((0, 2))), Degenerate)


def test_collinear_configuration_is_degenerate():
    cams = [_at(0.0, 0.0, 0.0), _at(0.0, 0.0, -2.0), _at(0.0, 0.0, -5.0)]
    target = np.array([0.0, 0.0, 5.0])
    z = np.stack([c.project(target) for c in cams])
    assert isinstance(triangulate_safe(cams, z), Degenerate)


def test_landmark_distance_threshold():
    cams, z = _scenario()
    d = float(np.sqrt(26.0))  # distance of (1,0,5) to both cameras
    eps = 1e-3
    near = triangulate_safe(cams, z, TriangulationParameters(landmark_distance_threshold=d + eps))
    far = triangulate_safe(cams, z, TriangulationParameters(landmark_distance_threshold=d - eps))
    assert isinstance(near, Valid)
    assert isinstance(far, Degenerate)
    # Non-positive thresholds disable the check.
    assert isinstance(triangulate_safe(cams, z, TriangulationParameters(landmark_distance_threshold=0.0)), Valid)


def test_distance_threshold_applies_to_any_camera():
    target = np.array([0.0, 0.0, 5.0])
    cams = [_at(0.0, 0.0, 0.0), _at(3.0, 0.0, -1.0)]
    z = np.stack([c.project(target) for c in cams])
    d_far = float(np.linalg.norm(target - [3.0, 0.0, -1.0]))
    assert d_far > 5.0
    assert isinstance(triangulate_safe(cams, z, TriangulationParameters(landmark_distance_threshold=5.5)), Degenerate)
    assert isinstance(triangulate_safe(cams, z, TriangulationParameters(landmark_distance_threshold=d_far + 1e-3)), Valid)


@pytest.mark.parametrize("solver_cheirality", [True, False])
def test_point_behind_a_camera(solver_cheirality):
    cams, z = _behind_second_camera()
    params = TriangulationParameters(solver_cheirality=solver_cheirality)
    assert isinstance(triangulate_safe(cams, z, params), BehindCamera)


def test_per_camera_checks_short_circuit_in_input_order():
    cams, z = _behind_second_camera()
    # Camera 0 already fails the distance gate before camera 1's cheirality is checked.
    loop = TriangulationParameters(solver_cheirality=False, landmark_distance_threshold=1.0)
    assert isinstance(triangulate_safe(cams, z, loop), Degenerate)
    # With cheirality enforced by the solver it is decided before any distance check.
    solver = TriangulationParameters(solver_cheirality=True, landmark_distance_threshold=1.0)
    assert isinstance(triangulate_safe(cams, z, solver), BehindCamera)


def test_dynamic_outlier_rejection():
    target = np.array([0.2, -0.1, 6.0])
    cams = [_at(0.0, 0.0, 0.0, CAL), _at(1.0, 0.0, 0.0, CAL), _at(0.0, 1.0, 0.0, CAL)]
    z = np.stack([c.project(target) for c in cams])

    strict = TriangulationParameters(dynamic_outlier_rejection_threshold=1e-3)
    assert isinstance(triangulate_safe(cams, z, strict), Valid)

    z_bad = z.copy()
    z_bad[2] += [25.0, -25.0]
    assert isinstance(triangulate_safe(cams, z_bad, TriangulationParameters(dynamic_outlier_rejection_threshold=0.5)), Degenerate)
    assert isinstance(triangulate_safe(cams, z_bad, TriangulationParameters(dynamic_outlier_rejection_threshold=100.0)), Valid)
    # Disabled by default.
    assert isinstance(triangulate_safe(cams, z_bad), Valid)


def test_refinement_with_noise_stays_valid():
    rng = np.random.default_rng(3)
    target = np.array([0.2, -0.1, 6.0])
    cams = [_at(0.0, 0.0, 0.0, CAL), _at(1.0, 0.0, 0.0, CAL), _at(0.0, 1.0, 0.0, CAL)]
    z = np.stack([c.project(target) for c in cams]) + rng.normal(scale=0.3, size=(3, 2))
    params = TriangulationParameters(enable_epi=True, dynamic_outlier_rejection_threshold=2.0)
    result = triangulate_safe(cams, z, params)
    assert isinstance(result, Valid)
    assert np.linalg.norm(result.point - target) < 0.1


def test_refinement_failure_maps_to_degenerate(monkeypatch, caplog):
    import scipy.optimize

    def _no_convergence(fun, x0, **kwargs):
        return SimpleNamespace(status=0, message="max_nfev reached", x=np.asarray(x0), success=False)

    monkeypatch.setattr(scipy.optimize, "least_squares", _no_convergence)
    cams, z = _scenario()

    with caplog.at_level(logging.WARNING, logger="landmarktri.api.triangulation"):
        result = triangulate_safe(cams, z, TriangulationParameters(enable_epi=True))
    assert isinstance(result, Degenerate)
    assert "refinement failed" in caplog.text

    # Without refinement the optimizer is never involved.
    assert isinstance(triangulate_safe(cams, z, TriangulationParameters(enable_epi=False)), Valid)
    # The exception API propagates the failure.
    with pytest.raises(RefinementError):
        triangulate_point3(cams, z, optimize=True)


def test_size_mismatch_propagates():
    cams, z = _scenario()
    with pytest.raises(DimensionMismatchError):
        triangulate_safe(cams, np.vstack([z, z[:1]]))


def test_shared_calibration_variant():
    target = np.array([0.5, 0.2, 8.0])
    poses = [Pose3(R=np.eye(3), t=np.zeros(3)), Pose3.from_rotvec([0.0, -0.05, 0.0], [1.5, 0.0, 0.0])]
    z = np.stack([PinholeCamera(p, CAL).project(target) for p in poses])
    result = triangulate_safe_from_poses(poses, CAL, z, TriangulationParameters(enable_epi=True))
    assert isinstance(result, Valid)
    assert np.linalg.norm(result.point - target) < 1e-6


def test_noisy_low_parallax_motion_is_degenerate():
    rng = np.random.default_rng(6)
    rotation_only = [
        PinholeCamera(Pose3.identity(), CAL),
        PinholeCamera(Pose3.from_rotvec([0.0, 0.1, 0.0], [0.0, 0.0, 0.0]), CAL),
    ]
    forward = [_at(0.0, 0.0, 0.0, CAL), _at(0.0, 0.0, 1.0, CAL)]
    for cams, target in ((rotation_only, np.array([0.3, -0.2, 6.0])), (forward, np.array([0.2, 0.1, 6.0]))):
        for _ in range(5):
            z = np.stack([c.project(target) for c in cams]) + rng.normal(scale=0.5, size=(2, 2))
            assert isinstance(triangulate_safe(cams, z), Degenerate)
            assert isinstance(triangulate_safe(cams, z, TriangulationParameters(enable_epi=True)), Degenerate)
