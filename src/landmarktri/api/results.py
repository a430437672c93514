"""
Outcome of a triangulation attempt: exactly one of

- `Valid(point)`: a trustworthy landmark estimate
- `Degenerate()`: the configuration does not constrain the landmark well enough
- `BehindCamera()`: the estimate lies behind at least one camera
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Literal, Union

import numpy as np

Status = Literal["valid", "degenerate", "behind_camera"]


class _ResultBase:
    status: ClassVar[Status]

    def valid(self) -> bool:
        return self.status == "valid"

    def degenerate(self) -> bool:
        return self.status == "degenerate"

    def behind_camera(self) -> bool:
        return self.status == "behind_camera"

    def __bool__(self) -> bool:
        return self.valid()


@dataclass(frozen=True, eq=False)
class Valid(_ResultBase):
    point: np.ndarray  # (3,)

    status: ClassVar[Status] = "valid"

    def __post_init__(self) -> None:
        point = np.asarray(self.point, dtype=np.float64).reshape(3).copy()
        if not np.all(np.isfinite(point)):
            raise ValueError("a valid result needs a finite point")
        point.setflags(write=False)
        object.__setattr__(self, "point", point)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Valid):
            return NotImplemented
        return bool(np.array_equal(self.point, other.point))

    def __hash__(self) -> int:
        return hash(("valid", self.point.tobytes()))

    def __str__(self) -> str:
        return f"point = {np.array2string(self.point, precision=6)}"


@dataclass(frozen=True)
class Degenerate(_ResultBase):
    status: ClassVar[Status] = "degenerate"

    def __str__(self) -> str:
        return "no point, status = degenerate"


@dataclass(frozen=True)
class BehindCamera(_ResultBase):
    status: ClassVar[Status] = "behind_camera"

    def __str__(self) -> str:
        return "no point, status = behind_camera"


TriangulationResult = Union[Valid, Degenerate, BehindCamera]


def result_from_status(status: str, point: np.ndarray | None = None) -> TriangulationResult:
    if status == "valid":
        if point is None:
            raise ValueError("status 'valid' requires a point")
        return Valid(point)
    if point is not None:
        raise ValueError(f"status {status!r} cannot carry a point")
    if status == "degenerate":
        return Degenerate()
    if status == "behind_camera":
        return BehindCamera()
    raise ValueError(f"unknown status: {status!r}")
