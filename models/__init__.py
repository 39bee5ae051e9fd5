"""Saddlepoint density evaluator and the negative-binomial-sum models."""

from .saddlepoint import (
    evaluate_log_density,
    evaluate_log_likelihood,
    log_density_and_grad,
    log_prob_zero,
)
from .negbin_sum import NegBinomialSum, NegBinomialSumModel

__all__ = [
    "evaluate_log_density",
    "evaluate_log_likelihood",
    "log_density_and_grad",
    "log_prob_zero",
    "NegBinomialSum",
    "NegBinomialSumModel",
]
