import numpy as np
import pytest

from landmarktri.core.distortion import BrownDistortion
from landmarktri.core.geometry import PinholeCalibration, PinholeCamera, Pose3, projection_matrix


def _random_pose(rng: np.random.Generator) -> Pose3:
    return Pose3.from_rotvec(rng.normal(scale=0.5, size=3), rng.normal(scale=2.0, size=3))


def test_pose_inverse_and_transforms_roundtrip():
    rng = np.random.default_rng(0)
    pose = _random_pose(rng)
    pts = rng.normal(size=(50, 3))

    local = pose.transform_to(pts)
    assert np.max(np.abs(pose.transform_from(local) - pts)) < 1e-12
    assert np.max(np.abs(pose.inverse().transform_from(pts) - local)) < 1e-12
    assert np.max(np.abs(pose.compose(pose.inverse()).matrix() - np.eye(4))) < 1e-12

    p = pts[0]
    assert pose.transform_to(p).shape == (3,)
    assert np.max(np.abs(Pose3.from_matrix(pose.matrix()).R - pose.R)) < 1e-15


def test_pose_rejects_non_rotation():
    with pytest.raises(ValueError):
        Pose3(R=np.diag([1.0, 1.0, -1.0]), t=np.zeros(3))
    with pytest.raises(ValueError):
        Pose3(R=2.0 * np.eye(3), t=np.zeros(3))


def test_projection_matrix_matches_camera_projection():
    rng = np.random.default_rng(1)
    cal = PinholeCalibration(fx=520.0, fy=510.0, cx=320.0, cy=240.0, skew=0.5)
    cam = PinholeCamera.lookat(np.array([3.0, -4.0, 1.0]), np.zeros(3), np.array([0.0, 0.0, 1.0]), cal)
    P = projection_matrix(cam.pose(), cal)
    assert P.shape == (3, 4)
    assert np.max(np.abs(P - cam.projection_matrix())) == 0.0

    X = rng.uniform(-0.5, 0.5, size=(20, 3))
    h = (P @ np.concatenate([X, np.ones((20, 1))], axis=1).T).T
    uv_P = h[:, :2] / h[:, 2:3]
    assert np.max(np.abs(uv_P - cam.project(X))) < 1e-9


def test_lookat_target_projects_to_principal_point():
    cal = PinholeCalibration(fx=800.0, fy=800.0, cx=320.0, cy=240.0)
    target = np.array([1.0, 2.0, 0.5])
    cam = PinholeCamera.lookat(np.array([10.0, 0.0, 2.0]), target, np.array([0.0, 0.0, 1.0]), cal)
    assert np.max(np.abs(cam.project(target) - [320.0, 240.0])) < 1e-9
    assert cam.depth(target) > 0.0


def test_calibrate_inverts_uncalibrate_with_distortion():
    rng = np.random.default_rng(2)
    cal = PinholeCalibration(fx=600.0, fy=590.0, cx=300.0, cy=250.0, skew=0.2, k1=-0.08, k2=0.01, p1=1e-3, p2=-5e-4)
    xy = rng.uniform(-0.3, 0.3, size=(100, 2))
    uv = cal.uncalibrate(xy)
    assert np.max(np.abs(cal.calibrate(uv) - xy)) < 1e-10
    assert np.max(np.abs(cal.dist() - [-0.08, 0.01, 1e-3, -5e-4, 0.0])) == 0.0


def test_identity_distortion_is_noop():
    xy = np.array([[0.1, -0.2], [0.3, 0.4]])
    d = BrownDistortion()
    assert d.is_identity
    assert np.array_equal(d.distort(xy), xy)
    assert np.array_equal(d.undistort(xy), xy)


def test_project_zero_depth_is_nan_and_backproject_roundtrip():
    cam = PinholeCamera(Pose3.identity(), PinholeCalibration(fx=500.0, fy=500.0, cx=320.0, cy=240.0))
    assert np.all(np.isnan(cam.project(np.array([1.0, 0.0, 0.0]))))

    X = np.array([0.3, -0.2, 4.0])
    uv = cam.project(X)
    assert np.max(np.abs(cam.backproject(uv, 4.0) - X)) < 1e-12


def test_default_camera_uses_unit_calibration():
    cam = PinholeCamera(Pose3.identity())
    assert np.array_equal(cam.calibration().K(), np.eye(3))
    assert np.max(np.abs(cam.project(np.array([1.0, 0.0, 5.0])) - [0.2, 0.0])) < 1e-15
