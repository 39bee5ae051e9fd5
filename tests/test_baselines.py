"""Tests for utils/baselines.py — the reference distributions."""

from __future__ import annotations

import math

import numpy as np
import pytest
import torch

from modules.mixture_spec import MixtureSpec
from utils.baselines import (
    empirical_log_frequency,
    exact_sum_log_pmf,
    moment_matching_log_density,
    nb_log_prob,
)


def _nb_log_pmf(k: int, mu: float, phi: float) -> float:
    return (
        math.lgamma(k + phi) - math.lgamma(phi) - math.lgamma(k + 1)
        + phi * math.log(phi / (phi + mu)) + k * math.log(mu / (phi + mu))
    )


class TestNegativeBinomial:

    @pytest.mark.parametrize("k", [0, 1, 7, 150])
    @pytest.mark.parametrize("mu, phi", [(3.0, 0.5), (40.0, 10.0), (1600.0, 1.0)])
    def test_matches_closed_form(self, k: int, mu: float, phi: float):
        assert nb_log_prob(float(k), mu, phi).item() == pytest.approx(
            _nb_log_pmf(k, mu, phi), rel=1e-10, abs=1e-10
        )


class TestExactConvolution:

    def test_single_component_is_negative_binomial(self):
        spec = MixtureSpec.from_pairs([(40.0, 10.0)])
        log_pmf = exact_sum_log_pmf(spec, 300)
        k = torch.arange(301, dtype=torch.float64)
        assert torch.allclose(log_pmf, nb_log_prob(k, 40.0, 10.0), rtol=1e-10)

    def test_normalized_and_moments(self):
        spec = MixtureSpec.from_pairs([(30.0, 2.0), (60.0, 5.0), (10.0, 0.7)])
        pmf = exact_sum_log_pmf(spec, 3000).exp()
        k = torch.arange(3001, dtype=torch.float64)
        assert pmf.sum().item() == pytest.approx(1.0, abs=1e-9)
        mean = (k * pmf).sum().item()
        var = (k**2 * pmf).sum().item() - mean**2
        assert mean == pytest.approx(spec.mean.item(), rel=1e-8)
        assert var == pytest.approx(spec.variance.item(), rel=1e-6)

    def test_two_components_by_hand(self):
        spec = MixtureSpec.from_pairs([(2.0, 1.0), (3.0, 2.0)])
        log_pmf = exact_sum_log_pmf(spec, 5)
        expected = math.log(sum(
            math.exp(_nb_log_pmf(j, 2.0, 1.0) + _nb_log_pmf(5 - j, 3.0, 2.0))
            for j in range(6)
        ))
        assert log_pmf[5].item() == pytest.approx(expected, rel=1e-12)

    def test_zero_matches_product(self):
        spec = MixtureSpec.from_pairs([(5.0, 2.0), (7.0, 3.0)])
        expected = _nb_log_pmf(0, 5.0, 2.0) + _nb_log_pmf(0, 7.0, 3.0)
        assert exact_sum_log_pmf(spec, 0)[0].item() == pytest.approx(expected, rel=1e-12)

    def test_batched_spec_rejected(self):
        spec = MixtureSpec(torch.ones(2, 3), torch.ones(2, 3))
        with pytest.raises(ValueError):
            exact_sum_log_pmf(spec, 10)


class TestMomentMatching:

    def test_normal_log_density(self):
        spec = MixtureSpec.from_pairs([(800.0, 10.0), (1600.0, 1.0)])
        x = torch.tensor([1000.0, 2400.0], dtype=torch.float64)
        var = spec.variance.item()
        expected = [
            -0.5 * math.log(2 * math.pi * var) - (v - 2400.0) ** 2 / (2 * var)
            for v in x.tolist()
        ]
        assert moment_matching_log_density(x, spec).tolist() == pytest.approx(expected, rel=1e-12)


class TestEmpiricalFrequency:

    def test_known_counts(self):
        samples = np.array([0, 0, 1, 3])
        edges = np.array([-0.5, 0.5, 1.5, 2.5, 3.5])
        centres, log_freq = empirical_log_frequency(samples, edges)

        assert centres.tolist() == [0.0, 1.0, 2.0, 3.0]
        assert log_freq[0] == pytest.approx(math.log(0.5))
        assert log_freq[1] == pytest.approx(math.log(0.25))
        assert log_freq[2] == -np.inf
        assert log_freq[3] == pytest.approx(math.log(0.25))

    def test_wide_bins_are_per_unit(self):
        samples = torch.tensor([1.0, 2.0, 3.0, 4.0])
        _, log_freq = empirical_log_frequency(samples, np.array([0.0, 10.0]))
        # four samples out of four, spread over ten units
        assert log_freq[0] == pytest.approx(math.log(0.1))
