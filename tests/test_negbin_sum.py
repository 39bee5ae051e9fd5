"""Tests for models/negbin_sum.py — the distribution and the fitting model."""

from __future__ import annotations

import pytest
import torch

from math_ops.errors import DomainError
from models.negbin_sum import NegBinomialSum, NegBinomialSumModel, component_distribution
from models.saddlepoint import evaluate_log_density
from modules.mixture_spec import MixtureSpec
from utils.baselines import moment_matching_log_density

MU = torch.tensor([800.0, 1600.0], dtype=torch.float64)
PHI = torch.tensor([10.0, 1.0], dtype=torch.float64)


class TestComponentDistribution:

    def test_moments_match_parameterization(self):
        nb = component_distribution(MixtureSpec(MU, PHI))
        assert torch.allclose(nb.mean, MU, rtol=1e-12)
        assert torch.allclose(nb.variance, MU + MU**2 / PHI, rtol=1e-12)


class TestNegBinomialSum:

    def test_sample_moments(self):
        torch.manual_seed(0)
        d = NegBinomialSum(MU, PHI)
        x = d.sample((100_000,))
        assert x.mean().item() == pytest.approx(d.mean.item(), rel=0.01)
        assert x.var().item() == pytest.approx(d.variance.item(), rel=0.05)

    def test_sample_support(self):
        torch.manual_seed(1)
        x = NegBinomialSum(MU, PHI).sample((1000,))
        assert (x >= 0).all()
        assert torch.equal(x, x.round())

    def test_sample_shape(self):
        mu = torch.rand(3, 2, dtype=torch.float64) * 10 + 1
        phi = torch.rand(3, 2, dtype=torch.float64) + 0.5
        d = NegBinomialSum(mu, phi)
        assert d.batch_shape == (3,)
        assert d.sample().shape == (3,)
        assert d.sample((5,)).shape == (5, 3)

    def test_sample_is_detached(self):
        phi = PHI.clone().requires_grad_(True)
        x = NegBinomialSum(MU, phi).sample((10,))
        assert not x.requires_grad

    def test_log_prob(self):
        d = NegBinomialSum(MU, PHI)
        x = torch.tensor([0.0, 100.0, 2400.0, 9000.0], dtype=torch.float64)
        expected = evaluate_log_density(x, MixtureSpec(MU, PHI))
        assert torch.allclose(d.log_prob(x), expected)

    def test_log_prob_rejects_non_integer(self):
        d = NegBinomialSum(MU, PHI, validate_args=True)
        with pytest.raises(ValueError):
            d.log_prob(torch.tensor([2.5], dtype=torch.float64))

    def test_log_prob_without_validation(self):
        d = NegBinomialSum(MU, PHI, validate_args=False)
        assert torch.isfinite(d.log_prob(torch.tensor(2.5, dtype=torch.float64)))

    def test_invalid_parameters(self):
        with pytest.raises(DomainError):
            NegBinomialSum(torch.tensor([1.0, -1.0]), torch.tensor([1.0, 1.0]))


class TestNegBinomialSumModel:

    def test_known_means_only_fit_phi(self):
        model = NegBinomialSumModel(MU, torch.tensor([3.0, 3.0]), learn_mu=False)
        names = [name for name, _ in model.named_parameters()]
        assert names == ["phi.raw"]
        assert torch.equal(model.spec().mu, MU)

    def test_learn_mu(self):
        model = NegBinomialSumModel(MU, torch.tensor([3.0, 3.0]), learn_mu=True)
        names = sorted(name for name, _ in model.named_parameters())
        assert names == ["mu.raw", "phi.raw"]
        assert torch.allclose(model.spec().mu, MU, rtol=1e-10)

    def test_shared_phi(self):
        model = NegBinomialSumModel(MU, torch.tensor([2.5]), learn_mu=False)
        spec = model.spec()
        assert spec.phi.shape == (2,)
        assert torch.allclose(spec.phi, torch.full((2,), 2.5, dtype=torch.float64))

    def test_bad_phi_count(self):
        with pytest.raises(ValueError):
            NegBinomialSumModel(MU, torch.tensor([1.0, 2.0, 3.0]))

    def test_bad_approximation(self):
        with pytest.raises(ValueError):
            NegBinomialSumModel(MU, PHI, approximation="laplace")

    def test_forward_saddlepoint(self):
        model = NegBinomialSumModel(MU, PHI, learn_mu=False)
        x = torch.tensor([500.0, 2400.0], dtype=torch.float64)
        out = model(x)
        assert out.shape == (2,)
        assert torch.allclose(out, evaluate_log_density(x, MixtureSpec(MU, PHI)), rtol=1e-8)

    def test_forward_moments(self):
        model = NegBinomialSumModel(MU, PHI, learn_mu=False, approximation="moments")
        x = torch.tensor([500.0, 2400.0], dtype=torch.float64)
        expected = moment_matching_log_density(x, MixtureSpec(MU, PHI))
        assert torch.allclose(model(x), expected, rtol=1e-8)

    @pytest.mark.parametrize("approximation", ["saddlepoint", "moments"])
    def test_short_fit_decreases_nll(self, approximation: str):
        torch.manual_seed(0)
        x = NegBinomialSum(MU, PHI).sample((200,))

        model = NegBinomialSumModel(
            MU, torch.tensor([3.0, 3.0]), learn_mu=False, approximation=approximation
        )
        optimizer = torch.optim.Adam(model.parameters(), lr=0.05)

        with torch.no_grad():
            start = -model(x).mean().item()
        for _ in range(20):
            optimizer.zero_grad()
            nll = -model(x).mean()
            nll.backward()
            optimizer.step()
        with torch.no_grad():
            end = -model(x).mean().item()

        assert end < start
        assert torch.isfinite(model.phi.raw.grad).all()
