"""Differentiable saddlepoint root via the implicit function theorem.

The root :math:`s(x, \\mu, \\phi)` is defined implicitly by
:math:`F(s; x, \\theta) = K'(s; \\theta) - x = 0`.  Differentiating that
identity gives

.. math::
    \\frac{\\partial s}{\\partial x} = \\frac{1}{K''(s)}, \\qquad
    \\frac{\\partial s}{\\partial \\theta} =
        -\\frac{\\partial K'(s; \\theta)/\\partial \\theta}{K''(s)},

so the backward pass needs only closed-form cumulant quantities at the
converged root and never differentiates through the solver iterations.

Usage
-----
>>> mu = torch.tensor([800.0, 1600.0], dtype=torch.float64, requires_grad=True)
>>> phi = torch.tensor([10.0, 1.0], dtype=torch.float64, requires_grad=True)
>>> s = saddlepoint_root(torch.tensor(2000.0), mu, phi)
>>> s.backward()
>>> mu.grad  # exact, via the implicit function theorem
"""

from __future__ import annotations

import torch
from torch import Tensor
from torch.autograd import Function
from torch.autograd.function import once_differentiable

from .cumulants import (
    as_float64,
    cgf_prime_partials,
    check_components,
    log_cgf_second,
    log_denominator,
)
from .root_solver import DEFAULT_MAX_ITER, DEFAULT_TOL, solve_saddlepoint


class SaddlepointRoot(Function):
    """Root of :math:`K'(s) = x` with implicit gradients.

    All tensor inputs must already share the shape ``[..., C]`` (``mu``,
    ``phi``) and ``[...]`` (``x``); broadcasting is done by
    :func:`saddlepoint_root`.
    """

    @staticmethod
    def forward(ctx, x: Tensor, mu: Tensor, phi: Tensor, tol: float, max_iter: int) -> Tensor:  # type: ignore[override]
        solution = solve_saddlepoint(x, mu, phi, tol=tol, max_iter=max_iter)
        s = solution.root
        ctx.save_for_backward(s, mu, phi)
        return s

    @staticmethod
    @once_differentiable
    def backward(ctx, grad_output: Tensor):  # type: ignore[override]
        s, mu, phi = ctx.saved_tensors

        log_den = log_denominator(s, mu, phi)
        k2 = torch.exp(log_cgf_second(s, mu, phi, log_den))
        scaled = grad_output / k2  # upstream · ds/dx

        grad_x = grad_mu = grad_phi = None
        if ctx.needs_input_grad[0]:
            grad_x = scaled
        if ctx.needs_input_grad[1] or ctx.needs_input_grad[2]:
            d_mu, d_phi = cgf_prime_partials(s, mu, phi, log_den)
            if ctx.needs_input_grad[1]:
                grad_mu = -scaled.unsqueeze(-1) * d_mu
            if ctx.needs_input_grad[2]:
                grad_phi = -scaled.unsqueeze(-1) * d_phi

        return grad_x, grad_mu, grad_phi, None, None


# ---------------------------------------------------------------------------
#  Public API
# ---------------------------------------------------------------------------

def saddlepoint_root(
    x: Tensor | float,
    mu: Tensor,
    phi: Tensor,
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
) -> Tensor:
    """Saddlepoint :math:`s_x` with gradients w.r.t. ``x``, ``mu`` and ``phi``.

    Parameters
    ----------
    x : Tensor | float
        Target sums (> 0), broadcastable with ``mu.shape[:-1]``.
    mu, phi : Tensor — ``[..., C]``
    tol, max_iter
        Forwarded to :func:`~math_ops.root_solver.solve_saddlepoint`.

    Returns
    -------
    s : Tensor
        float64, shape ``broadcast(x.shape, mu.shape[:-1])``.
    """
    x = as_float64(x)
    mu = as_float64(mu)
    phi = as_float64(phi)

    check_components(mu, phi)

    batch = torch.broadcast_shapes(x.shape, mu.shape[:-1])
    n_comp = mu.shape[-1]
    # expand() is differentiable, so autograd sums gradients back to the
    # original shapes
    x = x.expand(batch)
    mu = mu.expand(*batch, n_comp)
    phi = phi.expand(*batch, n_comp)
    return SaddlepointRoot.apply(x, mu, phi, tol, max_iter)
