"""Differential-evolution search for a charge/discharge schedule"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from .battery_manager import BatteryManager
from .errors import SearchFailure
from .markov_model import CHARGE_PRICE_RATIO, DISCHARGE_PRICE_RATIO
from .models import Action, BatteryParameters, RegimeLabel, Schedule
from .regime_classifier import as_price_array, classify

logger = logging.getLogger(__name__)

SOC_TOLERANCE = 1e-9

ProgressCallback = Callable[[int, float], None]


@dataclass
class SearchSettings:
    """Differential-evolution hyperparameters"""
    mutation_factor: float = 0.5
    recombination_rate: float = 0.7
    min_population: int = 15
    max_population: int = 30
    min_generations: int = 25
    max_generations: int = 50
    random_fraction: float = 0.2

    def __post_init__(self):
        # rand/1 mutation draws three individuals distinct from the target
        if self.min_population < 4:
            raise ValueError(f"min_population must be at least 4, got {self.min_population}")
        if self.min_population > self.max_population:
            raise ValueError(f"min_population ({self.min_population}) exceeds max_population ({self.max_population})")
        if self.min_generations < 1 or self.min_generations > self.max_generations:
            raise ValueError(f"Invalid generation bounds: {self.min_generations}..{self.max_generations}")
        if not 0 <= self.random_fraction < 1:
            raise ValueError(f"random_fraction must be in [0, 1), got {self.random_fraction}")

    def population_size(self, n_steps: int) -> int:
        return int(np.clip(self.min_population + n_steps // 24, self.min_population, self.max_population))

    def generations(self, n_steps: int) -> int:
        return int(np.clip(self.min_generations + n_steps // 24, self.min_generations, self.max_generations))


@dataclass
class SearchWeights:
    """Relative weights of the cost terms.

    The scale encodes priority: structural rejection, then SoC violations,
    then guidance, then profit.
    """
    rejection: float = 1e20
    soc_violation: float = 1e6
    wrong_direction: float = 1e4
    negative_revenue: float = 1e3
    regime_mismatch: float = 1e2
    medium_action: float = 1.0
    guided_reward: float = 1.0


class ScheduleCost:
    """Cost of a decision vector [charge_0..charge_T-1, discharge_0..discharge_T-1]"""

    def __init__(self, prices: np.ndarray, manager: BatteryManager,
                 regime_path: Optional[np.ndarray], weights: SearchWeights):
        self.prices = prices
        self.manager = manager
        self.weights = weights
        self.n_steps = len(prices)
        self.end_soc = manager.params.end_soc

        if regime_path is not None:
            path = np.asarray(regime_path, dtype=np.int64)
            self.low = path == RegimeLabel.LOW
            self.high = path == RegimeLabel.HIGH
            self.medium = path == RegimeLabel.MEDIUM
            self.mismatch = classify(prices) != path
        else:
            self.low = self.high = self.medium = self.mismatch = None

    def __call__(self, vector: np.ndarray) -> float:
        w = self.weights
        charge, discharge = vector[:self.n_steps], vector[self.n_steps:]
        if np.any((charge > 0) & (discharge > 0)):
            return w.rejection

        soc_path, excursion = self.manager.simulate(charge, discharge)
        if soc_path[-1] < self.end_soc - SOC_TOLERANCE:
            return w.rejection

        charged, discharged = self.manager.realized_flows(soc_path)
        revenue = float(np.dot(discharged - charged, self.prices))
        cost = -revenue + w.soc_violation * excursion

        if self.low is not None:
            cost -= w.guided_reward * (charged[self.low].sum() + discharged[self.high].sum())
            cost += w.wrong_direction * (discharged[self.low].sum() + charged[self.high].sum())
            cost += w.medium_action * (charged[self.medium].sum() + discharged[self.medium].sum())
            acting = (charged > 0) | (discharged > 0)
            cost += w.regime_mismatch * np.count_nonzero(acting & self.mismatch)

        if revenue < 0:
            cost += w.negative_revenue * -revenue
        return float(cost)


class ScheduleSearch:
    """DE/rand/1/bin over per-timestep charge and discharge power.

    All randomness comes from the injected generator, so one seed
    reproduces a whole run.
    """

    def __init__(self, settings: Optional[SearchSettings] = None,
                 weights: Optional[SearchWeights] = None,
                 rng: Optional[np.random.Generator] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        self.settings = settings or SearchSettings()
        self.weights = weights or SearchWeights()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.progress_callback = progress_callback

    def _guidance_masks(self, prices: np.ndarray, regime_path: Optional[np.ndarray]):
        if regime_path is not None:
            path = np.asarray(regime_path)
            return path == RegimeLabel.LOW, path == RegimeLabel.HIGH
        # Without a decoded path fall back to price ranking
        rank = np.argsort(np.argsort(prices, kind='stable'), kind='stable')
        n = len(prices)
        return rank < n / 3, rank >= 2 * n / 3

    def initial_population(self, prices: np.ndarray, params: BatteryParameters,
                           regime_path: Optional[np.ndarray], size: int) -> np.ndarray:
        """Seeded population: idle anchor, guided individuals, then a random minority"""
        n = len(prices)
        p_max = params.p_max
        low, high = self._guidance_masks(prices, regime_path)
        population = np.zeros((size, 2 * n))

        n_random = max(1, int(round(size * self.settings.random_fraction)))
        n_guided = size - 1 - n_random
        for i in range(1, size):
            if i <= n_guided:
                charge = np.where(low, self.rng.random(n) * p_max, 0.0)
                discharge = np.where(high, self.rng.random(n) * p_max, 0.0)
                # Keep the energy balance closable so most seeds are feasible
                budget = charge.sum() * params.efficiency + params.start_soc - params.end_soc
                total = discharge.sum()
                if total > 0 and total > budget:
                    discharge *= max(budget, 0.0) / total
            else:
                direction = self.rng.integers(0, 3, size=n)
                magnitude = self.rng.random(n) * p_max
                charge = np.where(direction == 1, magnitude, 0.0)
                discharge = np.where(direction == 2, magnitude, 0.0)
            population[i, :n] = charge
            population[i, n:] = discharge
        return population

    def search(self, prices: Sequence[float], params: BatteryParameters,
               regime_path: Optional[Sequence[int]] = None,
               timestamps: Optional[List[str]] = None) -> Schedule:
        """Best schedule found across all generations"""
        prices = as_price_array(prices)
        manager = BatteryManager(params)
        path = np.asarray(regime_path, dtype=np.int64) if regime_path is not None else None
        cost = ScheduleCost(prices, manager, path, self.weights)

        n = len(prices)
        size = self.settings.population_size(n)
        generations = self.settings.generations(n)
        dims = 2 * n
        f, cr = self.settings.mutation_factor, self.settings.recombination_rate

        population = self.initial_population(prices, params, path, size)
        costs = np.array([cost(ind) for ind in population])
        best_idx = int(np.argmin(costs))
        best, best_cost = population[best_idx].copy(), float(costs[best_idx])

        span = f"{timestamps[0]}..{timestamps[-1]}" if timestamps else f"{n} steps"
        logger.debug(f"schedule_search.start horizon={span} population={size} generations={generations}")

        for generation in range(generations):
            for i in range(size):
                picks = self.rng.choice(size - 1, 3, replace=False)
                r1, r2, r3 = (picks + (picks >= i)).tolist()
                donor = np.clip(population[r1] + f * (population[r2] - population[r3]), 0.0, params.p_max)

                crossover = self.rng.random(dims) < cr
                crossover[self.rng.integers(dims)] = True
                trial = np.where(crossover, donor, population[i])

                trial_cost = cost(trial)
                if trial_cost <= costs[i]:
                    population[i] = trial
                    costs[i] = trial_cost
                    if trial_cost < best_cost:
                        best, best_cost = trial.copy(), trial_cost

            logger.debug(f"schedule_search.generation gen={generation} best_cost={best_cost:.4f}")
            if self.progress_callback is not None:
                self.progress_callback(generation, best_cost)

        if best_cost >= self.weights.rejection:
            raise SearchFailure("Differential evolution found no feasible schedule")

        schedule = manager.build_schedule(prices, best[:n], best[n:])
        if schedule.soc[-1] < params.end_soc - SOC_TOLERANCE:
            raise SearchFailure(f"Final SoC {schedule.soc[-1]:.4f} below target {params.end_soc:.4f}")
        return schedule


def simple_optimize(prices: Sequence[float], params: BatteryParameters) -> Schedule:
    """Greedy threshold schedule: charge when cheap, discharge when expensive"""
    prices = as_price_array(prices)
    manager = BatteryManager(params)
    mean = prices.mean()
    n = len(prices)

    charging, discharging = np.zeros(n), np.zeros(n)
    soc_path = np.zeros(n)
    actions = []
    soc = params.start_soc
    for t, price in enumerate(prices):
        action = Action.IDLE
        if price < mean * CHARGE_PRICE_RATIO and soc < params.soc_max:
            charging[t] = min(params.p_max, manager.charge_headroom(soc))
            soc = min(params.soc_max, soc + charging[t] * params.efficiency)
            action = Action.CHARGE
        elif price > mean * DISCHARGE_PRICE_RATIO and soc > params.soc_min:
            discharging[t] = min(params.p_max, manager.available_energy(soc))
            soc = max(params.soc_min, soc - discharging[t])
            action = Action.DISCHARGE
        soc_path[t] = soc
        actions.append(action.value)

    return Schedule(
        charging=charging,
        discharging=discharging,
        soc=soc_path,
        revenue=(discharging - charging) * prices,
        actions=actions,
    )
