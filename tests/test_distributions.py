"""Tests for phenoevo.distributions — validated sampling primitives."""

import numpy as np
import pytest

from phenoevo.distributions import (
    bernoulli_draws,
    bernoulli_table,
    categorical,
    lognormal_factors,
)
from phenoevo.errors import DistributionConstructionError


@pytest.fixture
def rng():
    return np.random.default_rng(42)


class _FixedUniform:
    """Generator stand-in whose random() always returns one value."""

    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


class TestBernoulliTable:
    def test_extracts_environment_column(self):
        m = np.array([[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]])
        np.testing.assert_array_equal(bernoulli_table(m, 1), [0.2, 0.5])

    def test_environment_out_of_range(self):
        m = np.zeros((2, 2))
        with pytest.raises(DistributionConstructionError, match="environment 2"):
            bernoulli_table(m, 2)

    def test_probability_above_one(self):
        m = np.array([[0.1, 0.2], [1.5, 0.2]])
        with pytest.raises(DistributionConstructionError, match="phenotype 1"):
            bernoulli_table(m, 0)

    def test_nan_probability(self):
        m = np.array([[np.nan, 0.2]])
        with pytest.raises(DistributionConstructionError):
            bernoulli_table(m, 0)

    def test_is_value_error(self):
        assert issubclass(DistributionConstructionError, ValueError)


class TestBernoulliDraws:
    def test_certain_outcomes(self, rng):
        assert bernoulli_draws(np.ones(100), rng).all()
        assert not bernoulli_draws(np.zeros(100), rng).any()

    def test_one_uniform_per_trial_row_major(self):
        p = np.full((4, 2), 0.5)
        draws = bernoulli_draws(p, np.random.default_rng(3))
        u = np.random.default_rng(3).random((4, 2))
        np.testing.assert_array_equal(draws, u < 0.5)

    def test_empty(self, rng):
        assert bernoulli_draws(np.zeros((0, 2)), rng).shape == (0, 2)

    def test_frequency(self, rng):
        draws = bernoulli_draws(np.full(20_000, 0.3), rng)
        assert abs(draws.mean() - 0.3) < 0.02


class TestCategorical:
    def test_zero_weights_never_drawn(self, rng):
        draws = {categorical([0.0, 1.0, 0.0], rng) for _ in range(200)}
        assert draws == {1}

    def test_first_of_degenerate(self, rng):
        draws = {categorical([1.0, 0.0], rng) for _ in range(200)}
        assert draws == {0}

    def test_unnormalized_weights(self, rng):
        draws = [categorical([2.0, 6.0], rng) for _ in range(20_000)]
        assert abs(np.mean(draws) - 0.75) < 0.02

    def test_consumes_one_uniform(self):
        a = np.random.default_rng(11)
        b = np.random.default_rng(11)
        categorical([0.3, 0.3, 0.4], a)
        b.random()
        assert a.random() == b.random()

    @pytest.mark.parametrize("weights", [
        [0.3, 0.7, 0.0, 0.0],
        [1.0, 2.0, 0.0],
        [0.1, 0.2, 0.3, 0.4, 0.0],
    ])
    def test_largest_uniform_picks_last_nonzero(self, weights):
        rng = _FixedUniform(1.0 - 2.0**-53)
        assert categorical(weights, rng) == int(np.flatnonzero(weights)[-1])

    @pytest.mark.parametrize("weights", [
        [0.3, 0.7, 0.0, 0.0],
        [1.0, 2.0, 0.0],
        [0.5, 0.5],
    ])
    def test_uniform_at_upper_bound_picks_last_nonzero(self, weights):
        # u == total falls past the cumulative table
        rng = _FixedUniform(1.0)
        assert categorical(weights, rng) == int(np.flatnonzero(weights)[-1])

    def test_negative_weight(self, rng):
        with pytest.raises(DistributionConstructionError, match="non-negative"):
            categorical([0.5, -0.1], rng)

    def test_nan_weight(self, rng):
        with pytest.raises(DistributionConstructionError, match="finite"):
            categorical([np.nan, 1.0], rng)

    def test_all_zero(self, rng):
        with pytest.raises(DistributionConstructionError, match="positive sum"):
            categorical([0.0, 0.0], rng)

    def test_empty(self, rng):
        with pytest.raises(DistributionConstructionError, match="non-empty"):
            categorical([], rng)


class TestLognormalFactors:
    def test_zero_sigma_gives_exact_ones(self, rng):
        np.testing.assert_array_equal(lognormal_factors(0.0, 5, rng), np.ones(5))

    def test_positive(self, rng):
        f = lognormal_factors(0.5, 1000, rng)
        assert f.shape == (1000,)
        assert np.all(f > 0.0)

    def test_log_moments(self, rng):
        f = lognormal_factors(0.2, 50_000, rng)
        assert abs(np.log(f).mean()) < 0.01
        assert abs(np.log(f).std() - 0.2) < 0.01

    def test_negative_sigma(self, rng):
        with pytest.raises(DistributionConstructionError, match="scale"):
            lognormal_factors(-0.1, 3, rng)

    def test_nan_sigma(self, rng):
        with pytest.raises(DistributionConstructionError):
            lognormal_factors(float('nan'), 3, rng)
