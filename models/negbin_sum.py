"""Sum of independent negative binomials — distribution and fitting model.

Combines:
  * the exact generative family (component-wise sampling through
    :class:`torch.distributions.NegativeBinomial`),
  * the saddlepoint log-density of :mod:`models.saddlepoint`, and
  * a learnable ``nn.Module`` whose μ/φ can be fitted by any torch optimizer.

Parameterization: component *i* has mean ``mu_i`` and dispersion ``phi_i``
(``Var = mu_i + mu_i² / phi_i``).  In torch's terms that is
``NegativeBinomial(total_count=phi_i, logits=log(mu_i) - log(phi_i))``.
"""

from __future__ import annotations

import torch
import torch.nn as nn
from torch import Tensor
from torch.distributions import Distribution, NegativeBinomial, constraints

from math_ops.root_solver import DEFAULT_MAX_ITER, DEFAULT_TOL
from modules.mixture_spec import MixtureSpec
from modules.parameterization import PositiveParameter
from utils.baselines import moment_matching_log_density

from .saddlepoint import evaluate_log_density

APPROXIMATIONS = ("saddlepoint", "moments")


def component_distribution(spec: MixtureSpec) -> NegativeBinomial:
    """Batch of the C component distributions, batch shape ``[..., C]``."""
    return NegativeBinomial(
        total_count=spec.phi,
        logits=torch.log(spec.mu) - torch.log(spec.phi),
        validate_args=False,
    )


# ---------------------------------------------------------------------------
#  Distribution
# ---------------------------------------------------------------------------

class NegBinomialSum(Distribution):
    """Distribution of :math:`\\sum_i X_i`, :math:`X_i \\sim \\mathrm{NB}(\\mu_i, \\phi_i)`.

    ``log_prob`` is the saddlepoint approximation (unnormalized); sampling
    is exact.

    Parameters
    ----------
    mu, phi : Tensor — ``[..., C]``
    tol, max_iter
        Saddlepoint solver settings used by :meth:`log_prob`.
    """

    arg_constraints = {"mu": constraints.positive, "phi": constraints.positive}
    support = constraints.nonnegative_integer
    has_rsample = False

    def __init__(
        self,
        mu: Tensor,
        phi: Tensor,
        tol: float = DEFAULT_TOL,
        max_iter: int = DEFAULT_MAX_ITER,
        validate_args: bool | None = None,
    ):
        self.spec = MixtureSpec(mu, phi)
        self.mu = self.spec.mu
        self.phi = self.spec.phi
        self.tol = tol
        self.max_iter = max_iter
        super().__init__(
            batch_shape=self.spec.batch_shape,
            event_shape=torch.Size(),
            validate_args=validate_args,
        )

    @property
    def mean(self) -> Tensor:
        return self.spec.mean

    @property
    def variance(self) -> Tensor:
        return self.spec.variance

    def sample(self, sample_shape: torch.Size = torch.Size()) -> Tensor:
        with torch.no_grad():
            draws = component_distribution(self.spec).sample(sample_shape)
            return draws.sum(dim=-1)

    def log_prob(self, value: Tensor) -> Tensor:
        if self._validate_args:
            self._validate_sample(value)
        return evaluate_log_density(value, self.spec, tol=self.tol, max_iter=self.max_iter)


# ---------------------------------------------------------------------------
#  Learnable model
# ---------------------------------------------------------------------------

class NegBinomialSumModel(nn.Module):
    """Learnable μ/φ of a C-component sum, scored by an approximate likelihood.

    Parameters
    ----------
    mu_init : Tensor — ``[C]``
        Initial means.
    phi_init : Tensor — ``[C]`` or ``[1]``
        Initial dispersions; a single value is shared by all components.
    learn_mu : bool
        If False the means are fixed (known design), only φ is fitted.
    approximation : str
        ``"saddlepoint"`` or ``"moments"`` (normal approximation, reference
        only).
    """

    def __init__(
        self,
        mu_init: Tensor,
        phi_init: Tensor,
        learn_mu: bool = True,
        approximation: str = "saddlepoint",
        tol: float = DEFAULT_TOL,
        max_iter: int = DEFAULT_MAX_ITER,
    ):
        super().__init__()
        if approximation not in APPROXIMATIONS:
            raise ValueError(f"approximation must be one of {APPROXIMATIONS}, got {approximation!r}")

        mu_init = torch.as_tensor(mu_init, dtype=torch.float64)
        phi_init = torch.as_tensor(phi_init, dtype=torch.float64).reshape(-1)
        if phi_init.numel() not in (1, mu_init.numel()):
            raise ValueError(
                f"phi_init needs 1 or {mu_init.numel()} values, got {phi_init.numel()}"
            )

        self.n_components = mu_init.numel()
        self.approximation = approximation
        self.tol = tol
        self.max_iter = max_iter

        if learn_mu:
            self.mu = PositiveParameter(mu_init)
        else:
            self.register_buffer("mu_fixed", mu_init.clone())
            self.mu = None
        self.phi = PositiveParameter(phi_init)

    def spec(self) -> MixtureSpec:
        mu = self.mu() if self.mu is not None else self.mu_fixed
        phi = self.phi().expand(self.n_components)
        return MixtureSpec(mu, phi)

    def forward(self, x: Tensor) -> Tensor:
        """Per-observation approximate log-density, shape ``x.shape``."""
        spec = self.spec()
        if self.approximation == "moments":
            return moment_matching_log_density(x, spec)
        return evaluate_log_density(x, spec, tol=self.tol, max_iter=self.max_iter)
