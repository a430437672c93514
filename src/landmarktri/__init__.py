from landmarktri import params
from landmarktri.api import (
    BehindCamera,
    Degenerate,
    TriangulationResult,
    Valid,
    triangulate_point3,
    triangulate_safe,
)
from landmarktri.core.dlt import triangulate_dlt
from landmarktri.core.geometry import PinholeCalibration, PinholeCamera, Pose3
from landmarktri.errors import CheiralityError, DimensionMismatchError, RefinementError, UnderconstrainedError
from landmarktri.params import TriangulationParameters

__all__ = [
    "params",
    "BehindCamera",
    "Degenerate",
    "TriangulationResult",
    "Valid",
    "triangulate_point3",
    "triangulate_safe",
    "triangulate_dlt",
    "PinholeCalibration",
    "PinholeCamera",
    "Pose3",
    "CheiralityError",
    "DimensionMismatchError",
    "RefinementError",
    "UnderconstrainedError",
    "TriangulationParameters",
]
