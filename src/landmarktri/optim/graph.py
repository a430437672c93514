"""
Small nonlinear least-squares problems for landmark refinement.

A graph is a list of reprojection factors; values map symbolic keys to 3D points.
`optimize` solves the problem with SciPy's Levenberg-Marquardt (MINPACK) and returns
the optimized point stored under the requested key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

import numpy as np

from landmarktri.core.geometry import PinholeCalibration, PinholeCamera, Pose3, as_measurements, as_point3
from landmarktri.errors import DimensionMismatchError, RefinementError

LANDMARK_KEY = "p0"

Values = dict[str, np.ndarray]


@dataclass(frozen=True)
class TriangulationFactor:
    """
    Reprojection residual of one landmark in one camera:

      r = (camera.project(values[key]) - measured) / sigma

    sigma = 1 is the unit (isotropic, 2D) noise model.
    """

    camera: Any
    measured: np.ndarray  # (2,)
    key: str = LANDMARK_KEY
    sigma: float = 1.0

    def __post_init__(self) -> None:
        measured = np.asarray(self.measured, dtype=np.float64).reshape(2)
        object.__setattr__(self, "measured", measured)
        if not float(self.sigma) > 0.0:
            raise ValueError("sigma must be > 0")

    def unwhitened_error(self, values: Values) -> np.ndarray:
        return np.asarray(self.camera.project(values[self.key]), dtype=np.float64).reshape(2) - self.measured

    def whitened_error(self, values: Values) -> np.ndarray:
        return self.unwhitened_error(values) / float(self.sigma)

    def error(self, values: Values) -> float:
        r = self.whitened_error(values)
        return 0.5 * float(r @ r)


@dataclass
class TriangulationGraph:
    factors: list[TriangulationFactor] = field(default_factory=list)

    def add(self, factor: TriangulationFactor) -> None:
        self.factors.append(factor)

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self) -> Iterator[TriangulationFactor]:
        return iter(self.factors)

    def keys(self) -> list[str]:
        seen: dict[str, None] = {}
        for f in self.factors:
            seen.setdefault(f.key, None)
        return list(seen)

    def residuals(self, values: Values) -> np.ndarray:
        if not self.factors:
            return np.zeros((0,), dtype=np.float64)
        return np.concatenate([f.whitened_error(values) for f in self.factors], axis=0)

    def error(self, values: Values) -> float:
        return float(sum(f.error(values) for f in self.factors))


def triangulation_graph(
    cameras: Sequence[Any],
    measurements: object,
    landmark_key: str = LANDMARK_KEY,
    initial_estimate: np.ndarray | None = None,
) -> tuple[TriangulationGraph, Values]:
    """One reprojection factor per camera, plus the initial landmark value."""
    z = as_measurements(measurements)
    if len(cameras) != z.shape[0]:
        raise DimensionMismatchError(f"got {len(cameras)} cameras but {z.shape[0]} measurements")
    graph = TriangulationGraph()
    for camera, zi in zip(cameras, z):
        graph.add(TriangulationFactor(camera=camera, measured=zi, key=landmark_key))
    values: Values = {}
    if initial_estimate is not None:
        values[landmark_key] = as_point3(initial_estimate).copy()
    return graph, values


def triangulation_graph_from_poses(
    poses: Sequence[Pose3],
    calibration: PinholeCalibration,
    measurements: object,
    landmark_key: str = LANDMARK_KEY,
    initial_estimate: np.ndarray | None = None,
) -> tuple[TriangulationGraph, Values]:
    cameras = [PinholeCamera(pose, calibration) for pose in poses]
    return triangulation_graph(cameras, measurements, landmark_key, initial_estimate)


def _pack(values: Values, keys: list[str]) -> np.ndarray:
    return np.concatenate([as_point3(values[k]) for k in keys], axis=0)


def _unpack(x: np.ndarray, keys: list[str]) -> Values:
    return {k: x[3 * i : 3 * i + 3].copy() for i, k in enumerate(keys)}


def optimize(
    graph: TriangulationGraph,
    values: Values,
    landmark_key: str = LANDMARK_KEY,
    max_nfev: int | None = None,
) -> np.ndarray:
    """
    Minimize the graph's sum of squared residuals starting from `values`.

    Raises RefinementError when SciPy rejects the problem (e.g. non-finite residuals
    at the seed), stops without converging, or returns non-finite values.
    """
    from scipy.optimize import least_squares  # type: ignore

    keys = list(values)
    missing = [k for k in graph.keys() if k not in values]
    if missing:
        raise KeyError(f"no initial value for {missing}")
    if landmark_key not in values:
        raise KeyError(f"no initial value for {landmark_key!r}")

    x0 = _pack(values, keys)

    def fun(x: np.ndarray) -> np.ndarray:
        return graph.residuals(_unpack(x, keys))

    try:
        sol = least_squares(
            fun,
            x0,
            method="lm",
            max_nfev=None if max_nfev is None else int(max_nfev),
        )
    except ValueError as exc:
        raise RefinementError(f"refinement rejected: {exc}") from exc

    if sol.status <= 0:
        raise RefinementError(f"refinement did not converge: {sol.message}")
    if not np.all(np.isfinite(sol.x)):
        raise RefinementError("refinement returned non-finite values")
    return _unpack(sol.x, keys)[landmark_key]
