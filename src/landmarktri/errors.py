from __future__ import annotations


class TriangulationError(RuntimeError):
    """Base class for geometric/quality failures of a triangulation attempt."""


class UnderconstrainedError(TriangulationError):
    """Fewer than two views, or the DLT system has rank < 3."""

    def __init__(self, msg: str = "Triangulation Underconstrained Exception.") -> None:
        super().__init__(msg)


class CheiralityError(TriangulationError):
    """The triangulated landmark lies behind at least one camera."""

    def __init__(
        self,
        msg: str = "Triangulation Cheirality Exception: The resulting landmark is behind one or more cameras.",
    ) -> None:
        super().__init__(msg)


class RefinementError(TriangulationError):
    """Nonlinear refinement could not produce a usable point."""


class DimensionMismatchError(ValueError):
    """Cameras and measurements differ in length (caller contract violation)."""
