"""Saddlepoint equation solver.

Finds :math:`s_x` with :math:`K'(s_x) = x` for every element of a batch.

The bounded domain :math:`s < t_{\\max}` is removed by solving for
:math:`y` with :math:`s = t_{\\max} - e^{y}`, and the equation is posed in
log-space,

.. math::
    g(y) = \\ln K'(t_{\\max} - e^{y}) - \\ln x = 0,
    \\qquad
    g'(y) = -\\frac{K''(s)}{K'(s)}\\, e^{y},

which is strictly decreasing in :math:`y`.  The numerical strategy
(:func:`newton_bisect`) only sees a residual/derivative pair and knows
nothing about cumulants.

Everything here runs without building an autograd graph; gradients
w.r.t. the root are supplied by :mod:`math_ops.implicit_root`.
"""

from __future__ import annotations

import logging
from typing import Callable, NamedTuple

import torch
from torch import Tensor

from .cumulants import (
    as_float64,
    check_components,
    component_t_max,
    from_unconstrained,
    log_cgf_prime,
    log_cgf_second,
    log_denominator,
    to_unconstrained,
)
from .errors import ConvergenceError, DomainError, SingularityError

log = logging.getLogger(__name__)

DEFAULT_TOL = 1e-8
DEFAULT_MAX_ITER = 100

ResidualFn = Callable[[Tensor], tuple[Tensor, Tensor]]


class RootResult(NamedTuple):
    y: Tensor
    residual: Tensor
    n_iter: int
    bisected: Tensor


class SaddlepointSolution(NamedTuple):
    """Root of :math:`K'(s) = x` together with solver diagnostics."""

    root: Tensor
    y: Tensor
    residual: Tensor
    n_iter: int
    bisected: Tensor


# ---------------------------------------------------------------------------
#  Generic strategy: safeguarded Newton with bracketing bisection fallback
# ---------------------------------------------------------------------------

def newton_bisect(
    fn: ResidualFn,
    y0: Tensor,
    *,
    tol: float = DEFAULT_TOL,
    xtol: float = 1e-12,
    max_iter: int = DEFAULT_MAX_ITER,
    max_bisect: int = 200,
    max_step: float = 4.0,
    y_bound: float = 700.0,
) -> RootResult:
    """Elementwise root of a strictly **decreasing** function.

    Parameters
    ----------
    fn : callable
        ``fn(y) -> (g, dg)`` evaluated elementwise on a tensor shaped like
        ``y0``.
    y0 : Tensor
        Starting point.
    tol : float
        Absolute tolerance on ``|g|``.
    xtol : float
        Bisection also stops once the bracket is narrower than this.
    max_iter, max_bisect : int
        Iteration caps of the Newton and bisection phases.
    max_step : float
        Newton steps are clipped to ``[-max_step, max_step]``.
    y_bound : float
        Iterates are confined to ``[-y_bound, y_bound]``.

    Raises
    ------
    ConvergenceError
        If no bracket can be found inside ``[-y_bound, y_bound]`` or the
        bisection cap is exhausted.
    """
    y = y0.clone()
    g, dg = fn(y)
    converged = g.abs() <= tol
    stalled = torch.zeros_like(converged)

    n_iter = 0
    while n_iter < max_iter and not bool((converged | stalled).all()):
        n_iter += 1
        step = g / dg
        stalled = stalled | ~torch.isfinite(step)
        frozen = converged | stalled
        step = torch.where(frozen, torch.zeros_like(step), step)
        y = (y - step.clamp(-max_step, max_step)).clamp(-y_bound, y_bound)

        g_new, dg_new = fn(y)
        g = torch.where(frozen, g, g_new)
        dg = torch.where(frozen, dg, dg_new)
        converged = converged | (g.abs() <= tol)

    bisected = ~converged
    if not bisected.any():
        return RootResult(y, g, n_iter, bisected)

    log.debug(
        f"Newton left {int(bisected.sum())}/{bisected.numel()} roots "
        f"unconverged after {n_iter} steps; falling back to bisection"
    )

    # ---- Bracket: g(lo) >= 0 >= g(hi), widening around y0 ---------------
    active = bisected.clone()
    lo = y0.clone()
    hi = y0.clone()
    bracketed = torch.zeros_like(active)
    width = 1.0
    while True:
        need = active & ~bracketed
        if not need.any():
            break
        if width > 4.0 * y_bound:
            raise ConvergenceError(
                f"could not bracket {int(need.sum())} root(s) inside "
                f"[{-y_bound}, {y_bound}]"
            )
        lo = torch.where(need, (y0 - width).clamp(min=-y_bound), lo)
        hi = torch.where(need, (y0 + width).clamp(max=y_bound), hi)
        g_lo, _ = fn(lo)
        g_hi, _ = fn(hi)
        bracketed = bracketed | (need & (g_lo >= 0) & (g_hi <= 0))
        width *= 2.0

    # ---- Bisection -----------------------------------------------------
    for i in range(1, max_bisect + 1):
        mid = 0.5 * (lo + hi)
        g_mid, _ = fn(mid)
        y = torch.where(active, mid, y)
        g = torch.where(active, g_mid, g)

        done = (g_mid.abs() <= tol) | ((hi - lo) <= xtol)
        active = active & ~done
        if not active.any():
            return RootResult(y, g, n_iter + i, bisected)

        lo = torch.where(active & (g_mid > 0), mid, lo)
        hi = torch.where(active & (g_mid < 0), mid, hi)

    raise ConvergenceError(
        f"{int(active.sum())} root(s) not converged after {max_bisect} "
        f"bisection steps (max |g| = {float(g[active].abs().max()):.3e})"
    )


# ---------------------------------------------------------------------------
#  Saddlepoint equation
# ---------------------------------------------------------------------------

def _log_space_residual(
    log_x: Tensor,
    mu: Tensor,
    phi: Tensor,
    t_i: Tensor,
    upper: Tensor,
) -> ResidualFn:
    """Build ``y -> (g(y), g'(y))`` for the log-space saddlepoint equation."""
    offset = t_i - upper.unsqueeze(-1)  # >= 0, exactly 0 for the binding component

    def fn(y: Tensor) -> tuple[Tensor, Tensor]:
        e_y = torch.exp(y)
        s = from_unconstrained(y, upper)
        # distance to each edge, exact in y even when s itself rounds to t_max
        log_den = log_denominator(s, mu, phi, gap=offset + e_y.unsqueeze(-1))
        log_k1 = log_cgf_prime(s, mu, phi, log_den)
        log_k2 = log_cgf_second(s, mu, phi, log_den)
        g = log_k1 - log_x
        dg = -torch.exp(log_k2 - log_k1 + y)
        return g, dg

    return fn


def solve_saddlepoint(
    x: Tensor | float,
    mu: Tensor,
    phi: Tensor,
    *,
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
    y_bound: float = 700.0,
) -> SaddlepointSolution:
    """Solve :math:`K'(s) = x` elementwise.

    Parameters
    ----------
    x : Tensor | float
        Target values, strictly positive, broadcastable with
        ``mu.shape[:-1]``.
    mu, phi : Tensor — ``[..., C]``
        Component means and dispersions.
    tol : float
        Absolute tolerance on :math:`|\\ln K'(s) - \\ln x|`.
    max_iter : int
        Newton iteration cap (bisection has its own, larger, cap).

    Returns
    -------
    SaddlepointSolution
        ``root`` has the broadcast batch shape.

    Raises
    ------
    DomainError
        Non-positive or non-finite ``x``, invalid ``mu``/``phi``.
    SingularityError
        The root cannot be separated from :math:`t_{\\max}` in float64.
    ConvergenceError
        Iteration caps exhausted.
    """
    with torch.no_grad():
        x = as_float64(x).detach()
        mu = as_float64(mu).detach()
        phi = as_float64(phi).detach()
        check_components(mu, phi)
        if not bool(torch.isfinite(x).all()) or bool((x <= 0).any()):
            raise DomainError("saddlepoint targets must be finite and > 0")

        batch = torch.broadcast_shapes(x.shape, mu.shape[:-1], phi.shape[:-1])
        n_comp = mu.shape[-1]
        x = x.expand(batch)
        mu = mu.expand(*batch, n_comp)
        phi = phi.expand(*batch, n_comp)

        t_i = component_t_max(mu, phi)
        upper = t_i.amin(dim=-1)
        if not bool((upper > 0).all()):
            raise SingularityError(
                "phi/mu ratio is below float64 resolution; the CGF domain is empty"
            )

        fn = _log_space_residual(torch.log(x), mu, phi, t_i, upper)

        # Closest representable approach to t_max must already overshoot x.
        g_edge, _ = fn(torch.full_like(x, -y_bound))
        if bool((g_edge < 0).any()):
            raise SingularityError(
                f"{int((g_edge < 0).sum())} target(s) too large: root is "
                "indistinguishable from the CGF boundary"
            )

        result = newton_bisect(
            fn, to_unconstrained(torch.zeros_like(upper), upper),
            tol=tol, max_iter=max_iter, y_bound=y_bound,
        )
        root = from_unconstrained(result.y, upper)
        if not bool((t_i - root.unsqueeze(-1) > 0).all()):
            raise SingularityError(
                "root rounds onto the CGF boundary in float64"
            )

    return SaddlepointSolution(
        root=root,
        y=result.y,
        residual=result.residual,
        n_iter=result.n_iter,
        bisected=result.bisected,
    )
