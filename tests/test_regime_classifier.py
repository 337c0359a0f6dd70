"""
Tests for price regime classification
Run with: pytest tests/test_regime_classifier.py -v
"""

import numpy as np
import pytest

from arbitrage_optimizer.errors import InputError
from arbitrage_optimizer.models import ClassificationMethod, RegimeLabel
from arbitrage_optimizer.regime_classifier import as_price_array, classify, resolve_method

ALL_METHODS = [m.value for m in ClassificationMethod]


@pytest.fixture
def daily_prices():
    """Cheap night, expensive evening peak"""
    return [20, 18, 15, 14, 15, 22, 40, 60, 70, 65, 55, 50,
            48, 45, 47, 55, 70, 95, 110, 120, 100, 80, 50, 30]


class TestOutputShape:
    """Every method labels every observation"""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_length_matches_input(self, method, daily_prices):
        labels = classify(daily_prices, method, rng=np.random.default_rng(1))
        assert len(labels) == len(daily_prices)
        assert set(labels.tolist()) <= {0, 1, 2}

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_single_observation(self, method):
        labels = classify([42.0], method, rng=np.random.default_rng(1))
        assert labels.tolist() == [RegimeLabel.MEDIUM]

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_constant_series_is_medium(self, method):
        """Zero-variance input must not divide by zero"""
        labels = classify([100.0] * 24, method, rng=np.random.default_rng(1))
        assert (labels == RegimeLabel.MEDIUM).all()


class TestQuantile:
    def test_cut_points(self):
        """Sorted-index cut points with inclusive comparisons"""
        prices = list(range(1, 11))
        labels = classify(prices, 'quantile')
        # low cut sorted[3] = 4, high cut sorted[6] = 7
        assert labels.tolist() == [0, 0, 0, 0, 1, 1, 1, 2, 2, 2]

    def test_custom_percentiles_camel_case(self):
        prices = list(range(1, 11))
        labels = classify(prices, 'quantile', {'lowPercentile': 10, 'highPercentile': 90})
        assert labels.tolist() == [0, 0, 1, 1, 1, 1, 1, 1, 1, 1]
        assert labels[-1] == RegimeLabel.MEDIUM

    def test_night_is_low_evening_is_high(self, daily_prices):
        labels = classify(daily_prices, 'quantile')
        assert labels[3] == RegimeLabel.LOW
        assert labels[19] == RegimeLabel.HIGH


class TestKMeans:
    def test_labels_follow_centroid_order(self):
        """Cheapest cluster is LOW regardless of seeding order"""
        prices = [10, 11, 9, 50, 52, 51, 100, 98, 101] * 2
        for seed in range(5):
            labels = classify(prices, 'kmeans', rng=np.random.default_rng(seed))
            assert labels[:9].tolist() == [0, 0, 0, 1, 1, 1, 2, 2, 2]

    def test_deterministic_with_seed(self, daily_prices):
        a = classify(daily_prices, 'kmeans', rng=np.random.default_rng(7))
        b = classify(daily_prices, 'kmeans', rng=np.random.default_rng(7))
        assert np.array_equal(a, b)


class TestZScore:
    def test_default_cutoffs(self):
        prices = [0, 0, 0, 10, 10, 10]
        labels = classify(prices, 'zscore')
        assert labels.tolist() == [0, 0, 0, 2, 2, 2]

    def test_wide_cutoffs_give_medium(self):
        prices = [0, 0, 0, 10, 10, 10]
        labels = classify(prices, 'zscore', {'low_threshold': -2, 'high_threshold': 2})
        assert (labels == RegimeLabel.MEDIUM).all()


class TestRollingMethods:
    def test_volatility_falls_back_to_global_when_short(self):
        """Fewer points than the window use global mean/std"""
        prices = [10, 10, 50, 90, 90]
        labels = classify(prices, 'volatility', {'window': 24})
        assert labels.tolist() == [0, 0, 1, 2, 2]

    def test_volatility_uses_local_reference_in_burst(self):
        """A volatile window is judged against its own mean, calm points against the global one"""
        prices = [100.0] * 200 + [150.0, 250.0] * 6
        labels = classify(prices, 'volatility', {'window': 24})
        global_only = classify(prices, 'volatility', {'window': 24, 'volatility_threshold': 1e9})

        # 150 at index 210: above the global band (mean ~105.7) but inside the local one (mean ~143.8)
        assert global_only[210] == RegimeLabel.HIGH
        assert labels[210] == RegimeLabel.MEDIUM
        assert np.array_equal(labels[:200], global_only[:200])

    def test_adaptive_band_has_minimum_width(self):
        """A tiny wiggle around a flat level stays MEDIUM"""
        prices = [100.0 + (0.01 if i % 2 else -0.01) for i in range(48)]
        labels = classify(prices, 'adaptive')
        assert (labels == RegimeLabel.MEDIUM).all()

    def test_adaptive_spike_is_high(self):
        prices = [50.0] * 30 + [200.0] + [50.0] * 5
        labels = classify(prices, 'adaptive', {'window': 12})
        assert labels[30] == RegimeLabel.HIGH


class TestValidation:
    def test_empty_series(self):
        with pytest.raises(InputError):
            classify([], 'quantile')

    def test_non_numeric(self):
        with pytest.raises(InputError):
            as_price_array(['a', 'b'])

    def test_nan_rejected(self):
        with pytest.raises(InputError):
            as_price_array([1.0, float('nan')])

    def test_unknown_method(self):
        with pytest.raises(InputError):
            resolve_method('fourier')

    def test_none_method_defaults_to_quantile(self):
        assert resolve_method(None) == ClassificationMethod.QUANTILE
