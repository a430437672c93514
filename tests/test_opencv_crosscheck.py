from __future__ import annotations

import numpy as np
import pytest

from landmarktri.core.dlt import triangulate_dlt
from landmarktri.core.geometry import PinholeCalibration, PinholeCamera, Pose3


@pytest.mark.integration
def test_dlt_matches_opencv_triangulate_points() -> None:
    cv2 = pytest.importorskip("cv2")

    rng = np.random.default_rng(0)
    cal = PinholeCalibration(fx=600.0, fy=600.0, cx=320.0, cy=240.0)
    cams = [
        PinholeCamera(Pose3.identity(), cal),
        PinholeCamera(Pose3.from_rotvec([0.0, -0.1, 0.0], [1.0, 0.0, 0.0]), cal),
    ]
    P1, P2 = (c.projection_matrix() for c in cams)

    X = rng.uniform([-1.0, -1.0, 5.0], [1.0, 1.0, 8.0], size=(20, 3))
    uv1 = cams[0].project(X) + rng.normal(scale=0.5, size=(20, 2))
    uv2 = cams[1].project(X) + rng.normal(scale=0.5, size=(20, 2))

    Xh = cv2.triangulatePoints(P1, P2, uv1.T.copy(), uv2.T.copy())
    X_cv = (Xh[:3] / Xh[3]).T

    for i in range(X.shape[0]):
        p = triangulate_dlt([P1, P2], [uv1[i], uv2[i]])
        assert np.linalg.norm(p - X_cv[i]) < 1e-5
