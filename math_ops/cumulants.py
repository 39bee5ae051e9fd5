"""Cumulant-generating function of a sum of independent negative binomials.

For components :math:`X_i \\sim \\mathrm{NB}(\\mu_i, \\phi_i)` (mean
:math:`\\mu_i`, dispersion :math:`\\phi_i`) the CGF of the sum is

.. math::
    K(t) = \\sum_i \\phi_i \\left[\\ln\\phi_i - \\ln D_i(t)\\right],
    \\qquad D_i(t) = \\phi_i + \\mu_i - \\mu_i e^{t},

defined for :math:`t < t_{\\max} = \\min_i \\ln(\\phi_i/\\mu_i + 1)`.

Its first two derivatives are

.. math::
    K'(t)  = \\sum_i \\frac{\\phi_i \\mu_i e^{t}}{D_i(t)}, \\qquad
    K''(t) = \\sum_i \\frac{\\phi_i \\mu_i (\\phi_i + \\mu_i) e^{t}}{D_i(t)^2}.

Everything is evaluated in **log-space**.  The denominator is written as

.. math::
    \\ln D_i(t) = \\ln(\\phi_i + \\mu_i) + \\ln\\left(1 - e^{-(t_i - t)}\\right),
    \\qquad t_i = \\ln(\\phi_i/\\mu_i + 1),

so it never subtracts two large numbers and stays finite right up to the
boundary.  Shapes: ``mu``/``phi`` are ``[..., C]`` (C components), ``t`` is
``[...]``; reductions run over the trailing component axis.
"""

from __future__ import annotations

import math
from typing import NamedTuple

import torch
from torch import Tensor

from .errors import DomainError, SingularityError

LOG_2PI = math.log(2.0 * math.pi)


# ---------------------------------------------------------------------------
#  Input handling
# ---------------------------------------------------------------------------

def as_float64(value: Tensor | float) -> Tensor:
    """Convert to a float64 tensor, keeping autograd history for tensors."""
    if isinstance(value, Tensor):
        return value.to(torch.float64)
    return torch.as_tensor(value, dtype=torch.float64)


def check_components(mu: Tensor, phi: Tensor) -> None:
    """Raise :class:`DomainError` unless ``mu``/``phi`` describe a valid mixture."""
    if mu.dim() == 0 or phi.dim() == 0:
        raise DomainError("mu and phi need a trailing component axis")
    if mu.shape != phi.shape:
        raise DomainError(
            f"mu and phi must have the same shape, got {tuple(mu.shape)} "
            f"and {tuple(phi.shape)}"
        )
    if mu.shape[-1] == 0:
        raise DomainError("a mixture needs at least one component")

    for name, value in (("mu", mu), ("phi", phi)):
        bad = ~torch.isfinite(value) | (value <= 0)
        if bad.any():
            raise DomainError(
                f"{name} must be finite and > 0 "
                f"({int(bad.sum())} invalid of {value.numel()})"
            )


# ---------------------------------------------------------------------------
#  Domain of K
# ---------------------------------------------------------------------------

def log1mexp(a: Tensor) -> Tensor:
    r"""Stable :math:`\ln(1 - e^{-a})` for :math:`a > 0` (Mächler, 2012)."""
    # torch.where differentiates both branches; clamp each to its own range
    # so the unused one stays finite
    cut = math.log(2.0)
    return torch.where(
        a > cut,
        torch.log1p(-torch.exp(-a.clamp(min=cut))),
        torch.log(-torch.expm1(-a.clamp(max=cut))),
    )


def component_t_max(mu: Tensor, phi: Tensor) -> Tensor:
    """Per-component upper edge :math:`t_i = \\ln(\\phi_i/\\mu_i + 1)`, ``[..., C]``."""
    return torch.log1p(phi / mu)


def t_max(mu: Tensor, phi: Tensor) -> Tensor:
    """Upper edge of the CGF domain, the minimum over components, ``[...]``."""
    return component_t_max(mu, phi).amin(dim=-1)


def from_unconstrained(y: Tensor, upper: Tensor) -> Tensor:
    """Map :math:`y \\in \\mathbb{R}` to :math:`s = t_{\\max} - e^{y} < t_{\\max}`."""
    return upper - torch.exp(y)


def to_unconstrained(s: Tensor, upper: Tensor) -> Tensor:
    """Inverse of :func:`from_unconstrained`."""
    return torch.log(upper - s)


# ---------------------------------------------------------------------------
#  K and its derivatives
# ---------------------------------------------------------------------------

def log_denominator(
    s: Tensor,
    mu: Tensor,
    phi: Tensor,
    gap: Tensor | None = None,
) -> Tensor:
    r"""Compute :math:`\ln D_i(s) = \ln(\phi_i + \mu_i - \mu_i e^{s})`.

    Parameters
    ----------
    s : Tensor — ``[...]``
    mu, phi : Tensor — ``[..., C]``
    gap : Tensor, optional
        Precomputed distance :math:`t_i - s` to each component's edge,
        ``[..., C]``.  The solver passes it directly because it is known
        more accurately in the unconstrained parameterization than after
        rounding ``s``.

    Raises
    ------
    SingularityError
        If ``s`` sits on or beyond the edge of any component.
    """
    if gap is None:
        gap = component_t_max(mu, phi) - s.unsqueeze(-1)
    if not bool((gap > 0).all()):
        raise SingularityError(
            "saddlepoint reached the edge of the CGF domain "
            f"(min distance {float(gap.detach().min()):.3e})"
        )
    return torch.log(phi + mu) + log1mexp(gap)


def cgf(s: Tensor, mu: Tensor, phi: Tensor, log_den: Tensor | None = None) -> Tensor:
    """:math:`K(s)`, shape ``[...]``."""
    if log_den is None:
        log_den = log_denominator(s, mu, phi)
    return (phi * (torch.log(phi) - log_den)).sum(dim=-1)


def log_cgf_prime(
    s: Tensor, mu: Tensor, phi: Tensor, log_den: Tensor | None = None
) -> Tensor:
    """:math:`\\ln K'(s)` by log-sum-exp over components."""
    if log_den is None:
        log_den = log_denominator(s, mu, phi)
    terms = torch.log(phi) + torch.log(mu) + s.unsqueeze(-1) - log_den
    return torch.logsumexp(terms, dim=-1)


def log_cgf_second(
    s: Tensor, mu: Tensor, phi: Tensor, log_den: Tensor | None = None
) -> Tensor:
    """:math:`\\ln K''(s)` by log-sum-exp over components."""
    if log_den is None:
        log_den = log_denominator(s, mu, phi)
    terms = (
        torch.log(phi) + torch.log(mu) + torch.log(phi + mu)
        + s.unsqueeze(-1) - 2.0 * log_den
    )
    return torch.logsumexp(terms, dim=-1)


def cgf_prime_partials(
    s: Tensor, mu: Tensor, phi: Tensor, log_den: Tensor | None = None
) -> tuple[Tensor, Tensor]:
    r"""Partial derivatives of :math:`K'(s)` w.r.t. the parameters at fixed s.

    .. math::
        \frac{\partial K'}{\partial \mu_i} = \frac{\phi_i^2 e^{s}}{D_i^2},
        \qquad
        \frac{\partial K'}{\partial \phi_i} = \frac{\mu_i^2 e^{s}(1 - e^{s})}{D_i^2}.

    Returns
    -------
    d_mu, d_phi : Tensor — ``[..., C]`` each.
    """
    if log_den is None:
        log_den = log_denominator(s, mu, phi)
    s_ = s.unsqueeze(-1)
    d_mu = torch.exp(2.0 * torch.log(phi) + s_ - 2.0 * log_den)
    d_phi = torch.exp(2.0 * torch.log(mu) + s_ - 2.0 * log_den) * -torch.expm1(s_)
    return d_mu, d_phi


class CumulantTerms(NamedTuple):
    """K, ln K' and ln K'' sharing one denominator evaluation."""

    k: Tensor
    log_k1: Tensor
    log_k2: Tensor


def cumulant_terms(s: Tensor, mu: Tensor, phi: Tensor) -> CumulantTerms:
    log_den = log_denominator(s, mu, phi)
    return CumulantTerms(
        k=cgf(s, mu, phi, log_den),
        log_k1=log_cgf_prime(s, mu, phi, log_den),
        log_k2=log_cgf_second(s, mu, phi, log_den),
    )
