"""Utility functions (reference baselines, likelihood objectives)."""

from .baselines import (
    empirical_log_frequency,
    exact_sum_log_pmf,
    moment_matching_log_density,
    nb_log_prob,
)
from .objectives import moments_nll, saddlepoint_nll

__all__ = [
    "empirical_log_frequency",
    "exact_sum_log_pmf",
    "moment_matching_log_density",
    "nb_log_prob",
    "moments_nll",
    "saddlepoint_nll",
]
