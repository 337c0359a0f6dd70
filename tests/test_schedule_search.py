"""
Tests for the differential-evolution schedule search and the greedy fallback
Run with: pytest tests/test_schedule_search.py -v
"""

from unittest.mock import MagicMock

import numpy as np
import pytest

from arbitrage_optimizer.battery_manager import BatteryManager
from arbitrage_optimizer.errors import SearchFailure
from arbitrage_optimizer.models import BatteryParameters, RegimeLabel
from arbitrage_optimizer.regime_classifier import classify
from arbitrage_optimizer.schedule_search import (
    SOC_TOLERANCE,
    ScheduleCost,
    ScheduleSearch,
    SearchSettings,
    SearchWeights,
    simple_optimize,
)

TOL = 1e-6


@pytest.fixture
def params():
    return BatteryParameters(p_max=5.0, soc_min=10.0, soc_max=50.0, efficiency=0.85)


@pytest.fixture
def prices():
    """Cheap night, expensive evening peak"""
    return np.array([20, 18, 15, 14, 15, 22, 40, 60, 70, 65, 55, 50,
                     48, 45, 47, 55, 70, 95, 110, 120, 100, 80, 50, 30], dtype=float)


def assert_feasible(schedule, params):
    assert (schedule.soc >= params.soc_min - TOL).all()
    assert (schedule.soc <= params.soc_max + TOL).all()
    assert not ((schedule.charging > 0) & (schedule.discharging > 0)).any()
    assert (schedule.charging <= params.p_max / params.efficiency + TOL).all()
    assert (schedule.discharging <= params.p_max + TOL).all()


class TestSettings:
    def test_population_scales_with_horizon(self):
        settings = SearchSettings()
        assert settings.population_size(24) == 16
        assert settings.population_size(12) == 15
        assert settings.population_size(10_000) == 30

    @pytest.mark.parametrize("kwargs", [
        dict(min_population=3),
        dict(min_population=20, max_population=10),
        dict(min_generations=0),
        dict(min_generations=60),
        dict(random_fraction=1.0),
    ])
    def test_invalid_bounds(self, kwargs):
        with pytest.raises(ValueError):
            SearchSettings(**kwargs)

    def test_generations_scale_with_horizon(self):
        settings = SearchSettings()
        assert settings.generations(24) == 26
        assert settings.generations(10_000) == 50


class TestScheduleCost:
    def test_simultaneous_charge_and_discharge_rejected(self, prices, params):
        cost = ScheduleCost(prices, BatteryManager(params), None, SearchWeights())
        vector = np.zeros(2 * len(prices))
        vector[0] = 1.0
        vector[len(prices)] = 1.0
        assert cost(vector) == SearchWeights().rejection

    def test_idle_costs_nothing(self, prices, params):
        cost = ScheduleCost(prices, BatteryManager(params), None, SearchWeights())
        assert cost(np.zeros(2 * len(prices))) == 0.0

    def test_ending_below_target_rejected(self, prices, params):
        cost = ScheduleCost(prices, BatteryManager(params), None, SearchWeights())
        vector = np.zeros(2 * len(prices))
        vector[len(prices) + 19] = 5.0  # discharge only
        assert cost(vector) == SearchWeights().rejection

    def test_profitable_cycle_is_negative(self, prices, params):
        cost = ScheduleCost(prices, BatteryManager(params), None, SearchWeights())
        vector = np.zeros(2 * len(prices))
        vector[3] = 5.0                   # charge at 14
        vector[len(prices) + 19] = 4.25   # discharge at 120
        assert cost(vector) < 0

    def test_wrong_direction_penalized(self, prices, params):
        path = classify(prices)
        cost = ScheduleCost(prices, BatteryManager(params), path, SearchWeights())
        n = len(prices)
        right = np.zeros(2 * n)
        right[3], right[n + 19] = 5.0, 4.25
        wrong = np.zeros(2 * n)
        wrong[19], wrong[n + 3] = 5.0, 4.25
        assert path[3] == RegimeLabel.LOW and path[19] == RegimeLabel.HIGH
        assert cost(wrong) > cost(right) + SearchWeights().wrong_direction


class TestInitialPopulation:
    def test_structure(self, prices, params):
        search = ScheduleSearch(rng=np.random.default_rng(3))
        path = classify(prices)
        population = search.initial_population(prices, params, path, 16)
        n = len(prices)
        assert population.shape == (16, 2 * n)
        assert (population[0] == 0).all()
        assert (population >= 0).all() and (population <= params.p_max).all()
        for row in population:
            assert not ((row[:n] > 0) & (row[n:] > 0)).any()
        # Guided individuals act only in their matching regime
        for row in population[1:13]:
            assert (row[:n][path != RegimeLabel.LOW] == 0).all()
            assert (row[n:][path != RegimeLabel.HIGH] == 0).all()


class TestScheduleSearch:
    def test_schedule_is_feasible(self, prices, params):
        search = ScheduleSearch(rng=np.random.default_rng(42))
        schedule = search.search(prices, params, classify(prices))
        assert len(schedule) == len(prices)
        assert_feasible(schedule, params)
        assert schedule.soc[-1] >= params.end_soc - SOC_TOLERANCE
        assert schedule.discharging.sum() <= schedule.charging.sum() * params.efficiency + TOL

    def test_same_seed_same_schedule(self, prices, params):
        a = ScheduleSearch(rng=np.random.default_rng(5)).search(prices, params, classify(prices))
        b = ScheduleSearch(rng=np.random.default_rng(5)).search(prices, params, classify(prices))
        assert np.array_equal(a.charging, b.charging)
        assert np.array_equal(a.discharging, b.discharging)

    def test_without_regime_path(self, prices, params):
        schedule = ScheduleSearch(rng=np.random.default_rng(1)).search(prices, params)
        assert_feasible(schedule, params)
        assert schedule.total_revenue >= -TOL

    def test_progress_callback_per_generation(self, prices, params):
        callback = MagicMock()
        ScheduleSearch(rng=np.random.default_rng(1), progress_callback=callback).search(prices, params)
        assert callback.call_count == SearchSettings().generations(len(prices))
        best_costs = [c.args[1] for c in callback.call_args_list]
        assert best_costs == sorted(best_costs, reverse=True)

    def test_unreachable_target_fails(self, params):
        p = BatteryParameters(p_max=1.0, soc_min=10, soc_max=50, efficiency=0.85,
                              initial_soc=10, target_soc=50)
        with pytest.raises(SearchFailure):
            ScheduleSearch(rng=np.random.default_rng(1)).search(np.linspace(10, 100, 12), p)


class TestSimpleOptimize:
    def test_greedy_thresholds(self, prices, params):
        schedule = simple_optimize(prices, params)
        mean = prices.mean()
        assert_feasible(schedule, params)
        assert (schedule.charging[prices >= mean * 0.8] == 0).all()
        assert (schedule.discharging[prices <= mean * 1.2] == 0).all()
        assert schedule.charging.sum() > 0
        assert schedule.discharging.sum() > 0

    def test_constant_prices_stay_idle(self, params):
        schedule = simple_optimize(np.full(24, 100.0), params)
        assert schedule.actions == ['idle'] * 24
        assert schedule.total_revenue == 0.0
