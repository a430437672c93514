from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class BrownDistortion:
    """
    Brown-Conrady lens model acting on normalized image points xy = (X/Z, Y/Z).

    Coefficient names follow OpenCV (k1, k2, p1, p2, k3). All-zero coefficients
    describe an ideal pinhole lens, in which case both directions are identity.
    """

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0

    @property
    def is_identity(self) -> bool:
        return not any((self.k1, self.k2, self.p1, self.p2, self.k3))

    def coefficients(self) -> np.ndarray:
        return np.array([self.k1, self.k2, self.p1, self.p2, self.k3], dtype=np.float64)

    def distort(self, xy: np.ndarray) -> np.ndarray:
        """Ideal -> distorted normalized points, shape (...,2) in and out."""
        xy = np.asarray(xy, dtype=np.float64)
        if self.is_identity:
            return xy.copy()
        x = xy[..., 0]
        y = xy[..., 1]
        r2 = x * x + y * y
        radial = 1.0 + r2 * (self.k1 + r2 * (self.k2 + r2 * self.k3))
        dx = 2.0 * self.p1 * x * y + self.p2 * (r2 + 2.0 * x * x)
        dy = self.p1 * (r2 + 2.0 * y * y) + 2.0 * self.p2 * x * y
        return np.stack([x * radial + dx, y * radial + dy], axis=-1)

    def undistort(self, xy_d: np.ndarray, iterations: int = 20, tol: float = 1e-14) -> np.ndarray:
        """
        Fixed-point inverse of `distort`, adequate for small/moderate distortion.
        """
        xy_d = np.asarray(xy_d, dtype=np.float64)
        xy = xy_d.copy()
        if self.is_identity:
            return xy
        for _ in range(int(iterations)):
            step = xy_d - self.distort(xy)
            xy = xy + step
            if float(np.max(np.abs(step), initial=0.0)) < tol:
                break
        return xy


def brown_to_dict(m: BrownDistortion) -> dict:
    return {name: float(getattr(m, name)) for name in BROWN_KEYS}


BROWN_KEYS = ("k1", "k2", "p1", "p2", "k3")
