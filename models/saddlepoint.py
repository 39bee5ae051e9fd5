"""Saddlepoint density evaluator for sums of negative binomials.

For an observed sum :math:`x > 0` with saddlepoint :math:`s = s_x`
(:math:`K'(s) = x`) the approximate log-mass is

.. math::
    \\ln \\hat p(x) = -\\tfrac12\\left[\\ln 2\\pi + \\ln K''(s)\\right] + K(s) - s\\,x .

At :math:`x = 0` no finite saddlepoint exists; the exact answer, the
probability that every component is zero,

.. math::
    \\ln p(0) = -\\sum_i \\phi_i \\ln(1 + \\mu_i/\\phi_i),

is returned instead.  Values are differentiable w.r.t. ``mu``, ``phi``
(and a continuous ``x``): autograd flows through :math:`K` and
:math:`K''` directly and through :math:`s` via the implicit gradients of
:func:`~math_ops.implicit_root.saddlepoint_root`.
"""

from __future__ import annotations

import logging
from typing import Iterable

import torch
from torch import Tensor

from math_ops.cumulants import LOG_2PI, as_float64, cumulant_terms
from math_ops.errors import DomainError, SaddlepointError, SingularityError
from math_ops.implicit_root import saddlepoint_root
from math_ops.root_solver import DEFAULT_MAX_ITER, DEFAULT_TOL
from modules.mixture_spec import MixtureSpec

log = logging.getLogger(__name__)


def log_prob_zero(spec: MixtureSpec) -> Tensor:
    """Exact log-probability that the sum is zero, ``[...]``."""
    log_phi = torch.log(spec.phi)
    # φ·ln(1 + μ/φ), stable for any ratio μ/φ
    return -(spec.phi * (torch.logaddexp(log_phi, torch.log(spec.mu)) - log_phi)).sum(dim=-1)


def evaluate_log_density(
    x: Tensor | float,
    spec: MixtureSpec,
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
) -> Tensor:
    """Saddlepoint log-density of the sum at ``x``.

    Parameters
    ----------
    x : Tensor | float
        Observed sums (>= 0), broadcastable with ``spec.batch_shape``.
    spec : MixtureSpec
    tol, max_iter
        Solver settings.

    Returns
    -------
    log_p : Tensor
        float64, shape ``broadcast(x.shape, spec.batch_shape)``.

    Raises
    ------
    DomainError
        Negative or non-finite ``x``.
    SingularityError, ConvergenceError
        Propagated from the solver; also ``SingularityError`` if the
        result would not be finite.
    """
    x = as_float64(x)
    if not bool(torch.isfinite(x).all()):
        raise DomainError("observed sums must be finite")
    if bool((x < 0).any()):
        raise DomainError("observed sums must be >= 0 (support is non-negative)")

    batch = torch.broadcast_shapes(x.shape, spec.batch_shape)
    spec = spec.expand(batch)
    x = x.expand(batch)
    mu, phi = spec.mu, spec.phi

    log_p0 = log_prob_zero(spec)
    is_zero = x == 0
    if bool(is_zero.all()):
        out = log_p0
    else:
        # Zero entries get a harmless target (the mean, s = 0) and are masked out.
        target = torch.where(is_zero, spec.mean.detach(), x)
        s = saddlepoint_root(target, mu, phi, tol=tol, max_iter=max_iter)

        terms = cumulant_terms(s, mu, phi)
        log_p = -0.5 * (LOG_2PI + terms.log_k2) + terms.k - s * target
        out = torch.where(is_zero, log_p0, log_p)

    if not bool(torch.isfinite(out).all()):
        raise SingularityError(
            f"{int((~torch.isfinite(out)).sum())} log-density value(s) are not finite"
        )
    return out


def evaluate_log_likelihood(
    observations: Iterable[tuple[Tensor | float, MixtureSpec]],
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
    on_error: str = "raise",
) -> Tensor:
    """Joint log-likelihood of independent ``(x, spec)`` observations.

    Every pair is solved and evaluated on its own; the result is the sum of
    the individual log-densities.

    Parameters
    ----------
    observations : iterable of ``(x, MixtureSpec)``
        All specs must have the same number of components.
    on_error : str
        ``"raise"`` — the first failing observation invalidates the batch
        (default).
        ``"neg_inf"`` — a failing observation contributes ``-inf``; only for
        callers whose inference engine rejects infinite penalties.
    """
    if on_error not in ("raise", "neg_inf"):
        raise ValueError(f"on_error must be 'raise' or 'neg_inf', got {on_error!r}")

    observations = list(observations)
    n_components = {spec.n_components for _, spec in observations}
    if len(n_components) > 1:
        raise DomainError(
            f"observations mix component counts {sorted(n_components)}"
        )

    terms = []
    for i, (x, spec) in enumerate(observations):
        try:
            terms.append(evaluate_log_density(x, spec, tol=tol, max_iter=max_iter).sum())
        except SaddlepointError as err:
            if on_error == "raise":
                raise
            log.warning(f"Observation {i} scored as -inf: {err}")
            terms.append(torch.tensor(float("-inf"), dtype=torch.float64))

    if not terms:
        return torch.zeros((), dtype=torch.float64)
    return torch.stack(terms).sum()


def log_density_and_grad(
    x: Tensor | float,
    spec: MixtureSpec,
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
) -> tuple[Tensor, Tensor, Tensor]:
    """Log-density together with its gradient w.r.t. every μ_i and φ_i.

    Returns
    -------
    log_p : Tensor — ``[...]`` (detached)
    d_mu, d_phi : Tensor — ``[..., C]``
        Gradient of ``log_p.sum()``; for an unbatched spec this is the
        gradient of the single log-density.

    Raises
    ------
    SingularityError
        If the gradient overflows even though the value is finite.
    """
    mu = spec.mu.detach().requires_grad_(True)
    phi = spec.phi.detach().requires_grad_(True)
    log_p = evaluate_log_density(x, MixtureSpec(mu, phi), tol=tol, max_iter=max_iter)
    d_mu, d_phi = torch.autograd.grad(log_p.sum(), (mu, phi))
    if not (torch.isfinite(d_mu).all() and torch.isfinite(d_phi).all()):
        raise SingularityError("log-density gradient is not finite")
    return log_p.detach(), d_mu, d_phi
