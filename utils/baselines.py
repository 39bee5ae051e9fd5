"""Reference distributions used to judge the saddlepoint approximation.

  * **Moment matching** — normal density with the exact mean and variance of
    the sum (the classical closed-form comparator).
  * **Exact convolution** — the true pmf of the sum on ``0..max_value`` by
    direct convolution of the component pmfs (feasible for moderate means).
  * **Monte Carlo** — empirical log-frequency of simulated sums over bins.
"""

from __future__ import annotations

import numpy as np
import torch
import torch.distributions as dist
from torch import Tensor

from math_ops.cumulants import as_float64
from modules.mixture_spec import MixtureSpec


def moment_matching_log_density(x: Tensor | float, spec: MixtureSpec) -> Tensor:
    """Normal log-density with mean Σμ and variance Σ(μ + μ²/φ)."""
    x = as_float64(x)
    normal = dist.Normal(spec.mean, spec.variance.sqrt(), validate_args=False)
    return normal.log_prob(x)


def nb_log_prob(k: Tensor | float, mu: Tensor | float, phi: Tensor | float) -> Tensor:
    """Exact negative-binomial log-pmf, mean ``mu`` and dispersion ``phi``."""
    mu = as_float64(mu)
    phi = as_float64(phi)
    nb = dist.NegativeBinomial(
        total_count=phi, logits=torch.log(mu) - torch.log(phi), validate_args=False
    )
    return nb.log_prob(as_float64(k))


def exact_sum_log_pmf(spec: MixtureSpec, max_value: int) -> Tensor:
    """Exact log-pmf of the sum at ``0, 1, ..., max_value``.

    Only the component pmfs on ``0..max_value`` are needed: no mass beyond
    ``max_value`` can contribute to values at or below it.

    Parameters
    ----------
    spec : MixtureSpec
        Unbatched spec (``batch_shape == ()``).
    max_value : int

    Returns
    -------
    log_pmf : Tensor — ``[max_value + 1]``
        ``-inf`` where the pmf underflows.
    """
    if spec.batch_shape != torch.Size():
        raise ValueError("exact_sum_log_pmf expects an unbatched MixtureSpec")
    support = torch.arange(max_value + 1, dtype=torch.float64)
    mu = spec.mu.detach()
    phi = spec.phi.detach()

    pmf = np.zeros(max_value + 1)
    pmf[0] = 1.0
    for i in range(spec.n_components):
        component = nb_log_prob(support, mu[i], phi[i]).exp().numpy()
        pmf = np.convolve(pmf, component)[: max_value + 1]

    with np.errstate(divide="ignore"):
        return torch.from_numpy(np.log(pmf))


def empirical_log_frequency(
    samples: Tensor | np.ndarray,
    bin_edges: Tensor | np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Log of the empirical mass per unit of support in each bin.

    Comparable to a log-pmf evaluated at the bin centres when the pmf is
    smooth on the scale of a bin.

    Returns
    -------
    centres, log_freq : np.ndarray — ``[n_bins]``
        ``log_freq`` is ``-inf`` for empty bins.
    """
    samples = np.asarray(samples, dtype=np.float64).ravel()
    edges = np.asarray(bin_edges, dtype=np.float64)
    counts, _ = np.histogram(samples, bins=edges)
    widths = np.diff(edges)
    with np.errstate(divide="ignore"):
        log_freq = np.log(counts) - np.log(samples.size * widths)
    centres = 0.5 * (edges[:-1] + edges[1:])
    return centres, log_freq
