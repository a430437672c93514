from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from landmarktri.api.results import TriangulationResult, Valid
from landmarktri.core.distortion import BROWN_KEYS, brown_to_dict
from landmarktri.core.geometry import PinholeCalibration, PinholeCamera, Pose3, as_measurements
from landmarktri.params import ParametersValidationError, TriangulationParameters, parse_triangulation_parameters

SCENE_SCHEMA_VERSION = "landmarktri.scene.v0"
RESULT_SCHEMA_VERSION = "landmarktri.result.v0"


class SceneValidationError(ValueError):
    pass


@dataclass(frozen=True)
class Scene:
    """One landmark seen by several cameras."""

    cameras: tuple[PinholeCamera, ...]
    measurements: np.ndarray  # (N,2)
    params: TriangulationParameters | None = None


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise SceneValidationError(msg)


def _to_float_matrix(x: Any, shape: tuple[int, ...], what: str) -> np.ndarray:
    try:
        arr = np.asarray(x, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise SceneValidationError(f"{what} must be numeric") from exc
    _require(arr.size == int(np.prod(shape)), f"{what} must have shape {shape}")
    arr = arr.reshape(shape)
    _require(bool(np.all(np.isfinite(arr))), f"{what} has non-finite values")
    return arr


def _parse_calibration(data: Any, what: str) -> PinholeCalibration:
    _require(isinstance(data, dict), f"{what} must be an object")
    for key in ("fx", "fy", "cx", "cy"):
        _require(key in data, f"{what}.{key} is required")
    values: dict[str, float] = {}
    for key in ("fx", "fy", "cx", "cy", "skew", *BROWN_KEYS):
        if key in data:
            raw = data[key]
            _require(isinstance(raw, (int, float)) and not isinstance(raw, bool), f"{what}.{key} must be a number")
            _require(math.isfinite(float(raw)), f"{what}.{key} must be finite")
            values[key] = float(raw)
    try:
        return PinholeCalibration(**values)
    except ValueError as exc:
        raise SceneValidationError(f"{what}: {exc}") from exc


def _parse_camera(data: Any, i: int) -> PinholeCamera:
    what = f"cameras[{i}]"
    _require(isinstance(data, dict), f"{what} must be an object")
    pose = data.get("pose")
    _require(isinstance(pose, dict), f"{what}.pose is required")
    t = _to_float_matrix(pose.get("t"), (3,), f"{what}.pose.t")
    _require("R" in pose or "rvec" in pose, f"{what}.pose needs R or rvec")
    R = _to_float_matrix(pose["R"], (3, 3), f"{what}.pose.R") if "R" in pose else None
    rvec = _to_float_matrix(pose["rvec"], (3,), f"{what}.pose.rvec") if R is None else None
    try:
        pose3 = Pose3(R=R, t=t) if R is not None else Pose3.from_rotvec(rvec, t)
    except ValueError as exc:
        raise SceneValidationError(f"{what}.pose: {exc}") from exc
    calibration = _parse_calibration(data.get("calibration"), f"{what}.calibration")
    return PinholeCamera(pose3, calibration)


def parse_scene(data: dict[str, Any]) -> Scene:
    _require(isinstance(data, dict), "scene must be a JSON object")
    _require(data.get("schema_version") == SCENE_SCHEMA_VERSION, f"schema_version must be {SCENE_SCHEMA_VERSION}")

    cams_raw = data.get("cameras")
    _require(isinstance(cams_raw, list), "cameras must be a list")
    cameras = tuple(_parse_camera(c, i) for i, c in enumerate(cams_raw))

    meas_raw = data.get("measurements")
    _require(isinstance(meas_raw, list), "measurements must be a list of [u, v]")
    measurements = _to_float_matrix(meas_raw, (len(meas_raw), 2), "measurements") if meas_raw else np.zeros((0, 2))
    _require(
        measurements.shape[0] == len(cameras),
        f"got {len(cameras)} cameras but {measurements.shape[0]} measurements",
    )

    params = None
    if data.get("params") is not None:
        try:
            params = parse_triangulation_parameters(data["params"], require_schema=False)
        except ParametersValidationError as exc:
            raise SceneValidationError(f"params: {exc}") from exc
    return Scene(cameras=cameras, measurements=measurements, params=params)


def load_scene(path: Path) -> Scene:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_scene(data)


def _calibration_to_dict(cal: PinholeCalibration) -> dict[str, float]:
    out = {"fx": float(cal.fx), "fy": float(cal.fy), "cx": float(cal.cx), "cy": float(cal.cy)}
    if cal.skew:
        out["skew"] = float(cal.skew)
    out.update({key: value for key, value in brown_to_dict(cal.distortion()).items() if value})
    return out


def scene_to_dict(scene: Scene) -> dict[str, Any]:
    cameras: list[dict[str, Any]] = []
    for cam in scene.cameras:
        pose = cam.pose()
        cameras.append(
            {
                "pose": {"R": pose.rotation().tolist(), "t": pose.translation().tolist()},
                "calibration": _calibration_to_dict(cam.calibration()),
            }
        )
    out: dict[str, Any] = {
        "schema_version": SCENE_SCHEMA_VERSION,
        "cameras": cameras,
        "measurements": as_measurements(scene.measurements).tolist(),
    }
    if scene.params is not None:
        out["params"] = scene.params.to_dict()
    return out


def save_scene(path: Path, scene: Scene) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(scene_to_dict(scene), indent=2, sort_keys=True), encoding="utf-8")
    return path


def result_to_dict(result: TriangulationResult) -> dict[str, Any]:
    point = result.point.tolist() if isinstance(result, Valid) else None
    return {"schema_version": RESULT_SCHEMA_VERSION, "status": result.status, "point": point}
