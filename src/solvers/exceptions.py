"""Exceptions raised by the steady Navier-Stokes solver."""


class SteadyNSError(Exception):
    """Base class for solver errors."""


class ConfigurationError(SteadyNSError):
    """Invalid or missing input, raised before any assembly starts."""


class PointOwnershipError(SteadyNSError):
    """A probe point is claimed by more than one worker, or (with the ``raise``
    policy) by none."""

    def __init__(self, point, claims: int):
        self.point = tuple(point)
        self.claims = claims
        what = "no worker" if claims == 0 else f"{claims} workers"
        super().__init__(f"Point {self.point} is claimed by {what}; expected exactly one")
