"""
Linear (DLT) triangulation, see Hartley & Zisserman, 2nd Ed., p. 312.

For a view with projection rows p1, p2, p3 and measurement (u, v), the homogeneous
landmark X satisfies

    (u p3 - p1) X = 0
    (v p3 - p2) X = 0

Stacking two rows per view gives A (2N x 4); X is the right singular vector of the
smallest singular value of A.

The rank is measured on the first three columns of A with every row scaled to unit
norm. Each such row is a unit normal of its viewing ray, so the block does not depend
on pixel or world units, and for two views its singular values are

    sqrt(2), sqrt(2) cos(a/2), sqrt(2) sin(a/2)

with a the angle between the rays. Rotation-only motion and motion toward the
landmark give near-parallel rays and a rank below 3 even with noisy measurements.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from landmarktri.core.geometry import as_measurements
from landmarktri.errors import DimensionMismatchError, UnderconstrainedError

_RELATIVE_EPS = float(np.sqrt(np.finfo(np.float64).eps))

# Ray-block singular values at or below rank_tol * _RAY_RANK_TOL * s_max count as zero.
# At rank_tol = 1 two views need about 1.15 degrees of parallax.
_RAY_RANK_TOL = 1e-2


@dataclass(frozen=True)
class DLTSolution:
    point_h: np.ndarray  # (4,) unit-norm homogeneous solution
    rank: int  # rank of the unit-row ray block
    error: float  # smallest singular value (0 when A has fewer rows than columns)
    singular_values: np.ndarray  # of A
    ray_singular_values: np.ndarray  # of the unit-row ray block

    @property
    def at_infinity(self) -> bool:
        return abs(float(self.point_h[3])) <= _RELATIVE_EPS

    def point(self) -> np.ndarray:
        return self.point_h[:3] / self.point_h[3]


def _as_projections(projection_matrices: Sequence[np.ndarray]) -> list[np.ndarray]:
    out: list[np.ndarray] = []
    for P in projection_matrices:
        P = np.asarray(P, dtype=np.float64)
        if P.shape != (3, 4):
            raise ValueError(f"projection matrices must be 3x4, got {P.shape}")
        out.append(P)
    return out


def triangulation_matrix(projection_matrices: Sequence[np.ndarray], measurements: object) -> np.ndarray:
    """Stack the 2N x 4 DLT system, two rows per view in input order."""
    Ps = _as_projections(projection_matrices)
    z = as_measurements(measurements)
    if len(Ps) != z.shape[0]:
        raise DimensionMismatchError(
            f"got {len(Ps)} projection matrices but {z.shape[0]} measurements"
        )
    A = np.zeros((2 * len(Ps), 4), dtype=np.float64)
    for i, (P, (u, v)) in enumerate(zip(Ps, z)):
        A[2 * i] = u * P[2] - P[0]
        A[2 * i + 1] = v * P[2] - P[1]
    return A


def ray_block(A: np.ndarray) -> np.ndarray:
    """First three columns of A with every row scaled to unit norm."""
    B = np.asarray(A, dtype=np.float64)[:, :3]
    norms = np.linalg.norm(B, axis=1, keepdims=True)
    return B / np.where(norms > 0.0, norms, 1.0)


def solve_dlt(A: np.ndarray, rank_tol: float) -> DLTSolution:
    A = np.asarray(A, dtype=np.float64)
    if A.ndim != 2 or A.shape[1] != 4 or A.shape[0] == 0:
        raise ValueError("A must be (M,4) with M >= 1")
    if not np.all(np.isfinite(A)):
        raise ValueError("DLT system contains non-finite values")

    _U, S, Vt = np.linalg.svd(A, full_matrices=True)
    error = float(S[-1]) if A.shape[0] >= A.shape[1] else 0.0

    S_ray = np.linalg.svd(ray_block(A), compute_uv=False)
    cutoff = float(rank_tol) * _RAY_RANK_TOL * float(S_ray[0])
    rank = int(np.count_nonzero(S_ray > cutoff))
    return DLTSolution(point_h=Vt[-1].copy(), rank=rank, error=error, singular_values=S, ray_singular_values=S_ray)


def triangulate_dlt(
    projection_matrices: Sequence[np.ndarray],
    measurements: object,
    rank_tol: float = 1.0,
) -> np.ndarray:
    """
    Triangulate one landmark from N >= 2 views.

    Raises UnderconstrainedError when the system has rank < 3 or its solution lies
    at infinity.
    """
    sol = solve_dlt(triangulation_matrix(projection_matrices, measurements), rank_tol)
    if sol.rank < 3 or sol.at_infinity:
        raise UnderconstrainedError()
    point = sol.point()
    if not np.all(np.isfinite(point)):
        raise UnderconstrainedError()
    return point
