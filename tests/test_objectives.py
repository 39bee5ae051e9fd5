"""Tests for utils/objectives.py.

The objectives are thin reductions of the density evaluators, so these
tests pin the reductions and check that the saddlepoint likelihood
prefers the data-generating parameters.
"""

from __future__ import annotations

import pytest
import torch

from models.negbin_sum import NegBinomialSum
from models.saddlepoint import evaluate_log_density
from modules.mixture_spec import MixtureSpec
from utils.baselines import moment_matching_log_density
from utils.objectives import moments_nll, saddlepoint_nll

MU = torch.tensor([50.0, 100.0, 1300.0, 2000.0], dtype=torch.float64)
PHI = torch.full((4,), 10.0, dtype=torch.float64)


@pytest.fixture(scope="module")
def observations() -> torch.Tensor:
    torch.manual_seed(7)
    return NegBinomialSum(MU, PHI).sample((500,))


class TestReductions:

    def test_saddlepoint_reductions(self, observations):
        spec = MixtureSpec(MU, PHI)
        per_obs = -evaluate_log_density(observations, spec)
        assert torch.allclose(saddlepoint_nll(observations, spec, reduction="none"), per_obs)
        assert torch.allclose(saddlepoint_nll(observations, spec, reduction="sum"), per_obs.sum())
        assert torch.allclose(saddlepoint_nll(observations, spec), per_obs.mean())

    def test_moments_reductions(self, observations):
        spec = MixtureSpec(MU, PHI)
        per_obs = -moment_matching_log_density(observations, spec)
        assert torch.allclose(moments_nll(observations, spec, reduction="none"), per_obs)
        assert torch.allclose(moments_nll(observations, spec), per_obs.mean())

    def test_unknown_reduction(self, observations):
        with pytest.raises(ValueError):
            saddlepoint_nll(observations, MixtureSpec(MU, PHI), reduction="max")


class TestLikelihoodShape:

    @pytest.mark.parametrize("factor", [0.2, 5.0])
    def test_truth_beats_misspecified_dispersion(self, observations, factor: float):
        truth = saddlepoint_nll(observations, MixtureSpec(MU, PHI))
        wrong = saddlepoint_nll(observations, MixtureSpec(MU, PHI * factor))
        assert truth < wrong

    def test_gradient_reaches_dispersion(self, observations):
        phi = PHI.clone().requires_grad_(True)
        saddlepoint_nll(observations, MixtureSpec(MU, phi)).backward()
        assert phi.grad.shape == (4,)
        assert torch.isfinite(phi.grad).all()
        assert (phi.grad != 0).any()

    def test_per_observation_specs(self):
        """A batched spec scores each observation under its own mixture."""
        mu = torch.tensor([[800.0, 1600.0], [50.0, 100.0]], dtype=torch.float64)
        phi = torch.tensor([[10.0, 1.0], [10.0, 2.0]], dtype=torch.float64)
        x = torch.tensor([2000.0, 120.0], dtype=torch.float64)
        total = saddlepoint_nll(x, MixtureSpec(mu, phi), reduction="sum")
        expected = -(
            evaluate_log_density(2000.0, MixtureSpec(mu[0], phi[0]))
            + evaluate_log_density(120.0, MixtureSpec(mu[1], phi[1]))
        )
        assert total.item() == pytest.approx(expected.item(), rel=1e-12)
