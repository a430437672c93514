from __future__ import annotations

import json
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

PARAMS_SCHEMA_VERSION = "landmarktri.params.v0"


class ParametersValidationError(ValueError):
    pass


@dataclass(frozen=True)
class TriangulationParameters:
    """
    Settings for `triangulate_safe`.

    - `rank_tolerance`: threshold deciding whether the DLT system is degenerate
    - `enable_epi`: refine the DLT estimate with Levenberg-Marquardt
    - `landmark_distance_threshold`: flag as degenerate if the landmark is farther than
      this from any camera (<= 0 disables)
    - `dynamic_outlier_rejection_threshold`: flag as degenerate if the mean reprojection
      error exceeds this (<= 0 disables)
    - `solver_cheirality`: check cheirality right after solving (True) or per camera
      inside the quality loop (False)
    - `max_refinement_evaluations`: cap on residual evaluations during refinement
      (None lets SciPy decide)
    """

    rank_tolerance: float = 1.0
    enable_epi: bool = False
    landmark_distance_threshold: float = -1.0
    dynamic_outlier_rejection_threshold: float = -1.0
    solver_cheirality: bool = True
    max_refinement_evaluations: int | None = None

    def __post_init__(self) -> None:
        _require(isinstance(self.enable_epi, bool), "enable_epi must be a boolean")
        _require(isinstance(self.solver_cheirality, bool), "solver_cheirality must be a boolean")
        _require(math.isfinite(float(self.rank_tolerance)), "rank_tolerance must be finite")
        _require(float(self.rank_tolerance) > 0.0, "rank_tolerance must be > 0")
        _require(math.isfinite(float(self.landmark_distance_threshold)), "landmark_distance_threshold must be finite")
        _require(
            math.isfinite(float(self.dynamic_outlier_rejection_threshold)),
            "dynamic_outlier_rejection_threshold must be finite",
        )
        if self.max_refinement_evaluations is not None:
            _require(int(self.max_refinement_evaluations) >= 1, "max_refinement_evaluations must be >= 1")

    @property
    def checks_distance(self) -> bool:
        return self.landmark_distance_threshold > 0

    @property
    def rejects_outliers(self) -> bool:
        return self.dynamic_outlier_rejection_threshold > 0

    def __str__(self) -> str:
        return "\n".join(f"{f.name} = {getattr(self, f.name)}" for f in fields(self)) + "\n"

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ParametersValidationError(msg)


def _number(data: dict[str, Any], key: str, default: float) -> float:
    raw = data.get(key, default)
    _require(isinstance(raw, (int, float)) and not isinstance(raw, bool), f"{key} must be a number")
    value = float(raw)
    _require(math.isfinite(value), f"{key} must be finite")
    return value


def _flag(data: dict[str, Any], key: str, default: bool) -> bool:
    raw = data.get(key, default)
    _require(isinstance(raw, bool), f"{key} must be a boolean")
    return bool(raw)


def parse_triangulation_parameters(data: dict[str, Any], *, require_schema: bool = True) -> TriangulationParameters:
    """
    Build parameters from a JSON-like dict. Missing keys take their defaults.

    `require_schema=False` accepts dicts embedded in a larger document (no
    `schema_version` entry).
    """
    _require(isinstance(data, dict), "parameters must be a JSON object")
    data = dict(data)
    schema_version = data.pop("schema_version", None)
    if require_schema or schema_version is not None:
        _require(schema_version == PARAMS_SCHEMA_VERSION, f"schema_version must be {PARAMS_SCHEMA_VERSION}")

    known = {f.name for f in fields(TriangulationParameters)}
    unknown = sorted(set(data) - known)
    _require(not unknown, f"unknown parameter(s): {', '.join(unknown)}")

    max_evals = data.get("max_refinement_evaluations")
    if max_evals is not None:
        _require(
            isinstance(max_evals, int) and not isinstance(max_evals, bool),
            "max_refinement_evaluations must be an integer or null",
        )

    return TriangulationParameters(
        rank_tolerance=_number(data, "rank_tolerance", 1.0),
        enable_epi=_flag(data, "enable_epi", False),
        landmark_distance_threshold=_number(data, "landmark_distance_threshold", -1.0),
        dynamic_outlier_rejection_threshold=_number(data, "dynamic_outlier_rejection_threshold", -1.0),
        solver_cheirality=_flag(data, "solver_cheirality", True),
        max_refinement_evaluations=max_evals,
    )


def load_triangulation_parameters(path: Path) -> TriangulationParameters:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_triangulation_parameters(data)


def triangulation_parameters_to_dict(params: TriangulationParameters) -> dict[str, Any]:
    out: dict[str, Any] = {"schema_version": PARAMS_SCHEMA_VERSION}
    out.update(params.to_dict())
    return out
