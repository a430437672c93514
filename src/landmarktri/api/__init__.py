from landmarktri.api.results import BehindCamera, Degenerate, TriangulationResult, Valid
from landmarktri.api.scene_io import Scene, load_scene, save_scene
from landmarktri.api.triangulation import (
    solve_point3,
    triangulate_nonlinear,
    triangulate_point3,
    triangulate_point3_from_poses,
    triangulate_safe,
    triangulate_safe_from_poses,
)

__all__ = [
    "BehindCamera",
    "Degenerate",
    "TriangulationResult",
    "Valid",
    "Scene",
    "load_scene",
    "save_scene",
    "solve_point3",
    "triangulate_nonlinear",
    "triangulate_point3",
    "triangulate_point3_from_poses",
    "triangulate_safe",
    "triangulate_safe_from_poses",
]
