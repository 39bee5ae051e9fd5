"""Likelihood objectives for fitting μ/φ from observed sums.

Both objectives are negative log-likelihoods of i.i.d. sums under a single
:class:`~modules.mixture_spec.MixtureSpec` (or one spec per observation via
its batch shape):

    saddlepoint_nll — the saddlepoint approximation (the method under study)
    moments_nll     — normal moment matching (reference comparator)
"""

from __future__ import annotations

from torch import Tensor

from math_ops.root_solver import DEFAULT_MAX_ITER, DEFAULT_TOL
from models.saddlepoint import evaluate_log_density
from modules.mixture_spec import MixtureSpec

from .baselines import moment_matching_log_density


def _reduce(nll: Tensor, reduction: str) -> Tensor:
    if reduction == "mean":
        return nll.mean()
    if reduction == "sum":
        return nll.sum()
    if reduction == "none":
        return nll
    raise ValueError(f"reduction must be 'mean', 'sum' or 'none', got {reduction!r}")


def saddlepoint_nll(
    x: Tensor,
    spec: MixtureSpec,
    reduction: str = "mean",
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
) -> Tensor:
    """Negative saddlepoint log-likelihood of the observed sums ``x``."""
    return _reduce(-evaluate_log_density(x, spec, tol=tol, max_iter=max_iter), reduction)


def moments_nll(x: Tensor, spec: MixtureSpec, reduction: str = "mean") -> Tensor:
    """Negative normal (moment-matching) log-likelihood of ``x``."""
    return _reduce(-moment_matching_log_density(x, spec), reduction)
