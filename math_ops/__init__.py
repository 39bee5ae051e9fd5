"""Core numerical operators for the saddlepoint approximation.

This package contains the log-space cumulant algebra of a sum of
independent negative binomials, the saddlepoint equation solver, and the
differentiable root (implicit-function-theorem gradients).
"""

from .cumulants import (
    CumulantTerms,
    cgf,
    cgf_prime_partials,
    cumulant_terms,
    log_cgf_prime,
    log_cgf_second,
    t_max,
)
from .errors import ConvergenceError, DomainError, SaddlepointError, SingularityError
from .implicit_root import SaddlepointRoot, saddlepoint_root
from .root_solver import SaddlepointSolution, newton_bisect, solve_saddlepoint

__all__ = [
    "CumulantTerms",
    "cgf",
    "cgf_prime_partials",
    "cumulant_terms",
    "log_cgf_prime",
    "log_cgf_second",
    "t_max",
    "SaddlepointError",
    "DomainError",
    "SingularityError",
    "ConvergenceError",
    "SaddlepointRoot",
    "saddlepoint_root",
    "SaddlepointSolution",
    "newton_bisect",
    "solve_saddlepoint",
]
