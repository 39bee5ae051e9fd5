"""Error taxonomy for saddlepoint evaluation.

Every error is scoped to the observation(s) being evaluated; callers
typically reject the current parameter proposal and carry on.
"""

from __future__ import annotations


class SaddlepointError(Exception):
    """Base class for all evaluation failures."""


class DomainError(SaddlepointError, ValueError):
    """Invalid input: non-positive μ/φ, negative x, empty mixture."""


class SingularityError(SaddlepointError, ArithmeticError):
    """A denominator ``φ + μ − μ·eˢ`` reached zero (s drifted onto t_max)."""


class ConvergenceError(SaddlepointError, RuntimeError):
    """The root solver exhausted its iteration cap without converging."""
