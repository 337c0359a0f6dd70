"""
Storage Arbitrage Optimizer

Computes a profit-maximizing charge/discharge schedule for a single storage
asset: price regimes are classified, an HMM is fit over them, the Viterbi path
guides a differential-evolution search, and the result is summarized as KPIs.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from .battery_manager import count_cycles, validate_parameters
from .errors import InputError, InsufficientDataError, OptimizerError
from .markov_model import build_emission_matrix, build_transition_matrix
from .models import (
    AnalysisResult,
    BatteryParameters,
    ClassificationMethod,
    MIN_SEARCH_TIMESTEPS,
    OptimizationFailure,
    OptimizationResult,
    RegimeLabel,
    Schedule,
)
from .regime_classifier import Options, as_price_array, classify, resolve_method
from .schedule_search import ProgressCallback, ScheduleSearch, SearchSettings, SearchWeights, simple_optimize
from .viterbi import decode_with_score

logger = logging.getLogger(__name__)

METHOD_DIFFERENTIAL_EVOLUTION = "differential_evolution"
METHOD_SIMPLIFIED = "simplified"

ParamsLike = Union[BatteryParameters, Dict[str, Any]]


def _vwap(volumes: np.ndarray, prices: np.ndarray) -> float:
    active = volumes > 0
    total = volumes[active].sum()
    return float(np.dot(volumes[active], prices[active]) / total) if total > 0 else 0.0


class ArbitrageOptimizer:
    """Runs the classify → HMM → Viterbi → search pipeline.

    Holds configuration only; every call builds its own state, so one
    instance can serve repeated or concurrent calls.
    """

    def __init__(self, settings: Optional[SearchSettings] = None,
                 weights: Optional[SearchWeights] = None,
                 seed: Optional[int] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        self.settings = settings or SearchSettings()
        self.weights = weights or SearchWeights()
        self.seed = seed
        self.progress_callback = progress_callback

    @classmethod
    def from_config(cls, config) -> "ArbitrageOptimizer":
        return cls(settings=config.search_settings(), weights=config.search_weights(),
                   seed=config.get('seed'))

    def _rng(self, seed: Optional[int], rng: Optional[np.random.Generator]) -> np.random.Generator:
        if rng is not None:
            return rng
        return np.random.default_rng(self.seed if seed is None else seed)

    @staticmethod
    def battery_parameters(params: ParamsLike) -> BatteryParameters:
        if isinstance(params, BatteryParameters):
            return params
        if not isinstance(params, Mapping):
            raise InputError(f"Battery parameters must be a mapping, got {type(params).__name__}")
        try:
            return BatteryParameters.from_dict(params)
        except (TypeError, ValueError, KeyError) as e:
            raise InputError(f"Invalid battery parameters: {e}") from e

    def build_result(self, prices: np.ndarray, schedule: Schedule, params: BatteryParameters,
                     method: str, labels: Optional[np.ndarray] = None,
                     transition: Optional[np.ndarray] = None,
                     emission: Optional[np.ndarray] = None,
                     path: Optional[np.ndarray] = None,
                     timestamps: Optional[List[str]] = None) -> OptimizationResult:
        """Aggregate a schedule into KPIs"""
        empty = np.array([], dtype=np.int64)
        charged = float(schedule.charging.sum())
        discharged = float(schedule.discharging.sum())
        return OptimizationResult(
            schedule=schedule,
            total_revenue=schedule.total_revenue,
            total_energy_charged=charged,
            total_energy_discharged=discharged,
            operational_efficiency=discharged / charged if charged > 0 else 0.0,
            avg_price=float(prices.mean()),
            cycles=count_cycles(schedule.soc, params),
            vwap_charge=_vwap(schedule.charging, prices),
            vwap_discharge=_vwap(schedule.discharging, prices),
            method=method,
            regime_labels=labels if labels is not None else empty,
            transition_matrix=transition if transition is not None else np.empty((0, 0)),
            emission_matrix=emission if emission is not None else np.empty((0, 0)),
            regime_path=path if path is not None else empty,
            timestamps=timestamps,
        )

    def simple_optimize(self, prices: Sequence[float], params: ParamsLike,
                        timestamps: Optional[List[str]] = None) -> OptimizationResult:
        """Greedy baseline wrapped into a full result"""
        arr = as_price_array(prices)
        battery = self.battery_parameters(params)
        validate_parameters(battery)
        schedule = simple_optimize(arr, battery)
        return self.build_result(arr, schedule, battery, METHOD_SIMPLIFIED,
                                 timestamps=list(timestamps) if timestamps is not None else None)

    def optimize(self, prices: Sequence[float], params: ParamsLike,
                 categorization_method: Union[str, ClassificationMethod] = ClassificationMethod.QUANTILE,
                 categorization_options: Options = None,
                 timestamps: Optional[Sequence[str]] = None,
                 seed: Optional[int] = None,
                 rng: Optional[np.random.Generator] = None
                 ) -> Union[OptimizationResult, OptimizationFailure]:
        """Optimize one price series; failures come back as OptimizationFailure"""
        try:
            arr = as_price_array(prices)
            battery = self.battery_parameters(params)
            validate_parameters(battery)
            method = resolve_method(categorization_method)
            if timestamps is not None and len(timestamps) != len(arr):
                raise InputError(f"Got {len(timestamps)} timestamps for {len(arr)} prices")
            if len(arr) < MIN_SEARCH_TIMESTEPS:
                raise InsufficientDataError(len(arr), MIN_SEARCH_TIMESTEPS)
            stamps = list(timestamps) if timestamps is not None else None
            generator = self._rng(seed, rng)

            labels = classify(arr, method, categorization_options, generator)
            transition = build_transition_matrix(labels)
            emission = build_emission_matrix(arr, method, categorization_options, labels=labels)
            path, _ = decode_with_score(labels, transition, emission)

            search = ScheduleSearch(self.settings, self.weights, generator, self.progress_callback)
            try:
                schedule = search.search(arr, battery, path, stamps)
                used = METHOD_DIFFERENTIAL_EVOLUTION
            except Exception as e:
                logger.warning(f"Schedule search failed, using greedy fallback: {e}")
                schedule = simple_optimize(arr, battery)
                used = METHOD_SIMPLIFIED

            result = self.build_result(arr, schedule, battery, used, labels, transition,
                                       emission, path, stamps)
            logger.info(f"Optimization complete: method={used} points={len(arr)} "
                        f"revenue={result.total_revenue:.2f} cycles={result.cycles}")
            return result
        except OptimizerError as e:
            logger.warning(f"Optimization rejected ({e.error_type}): {e}")
            return OptimizationFailure(error=str(e), error_type=e.error_type)
        except Exception as e:
            logger.exception(f"Optimization failed: {e}")
            return OptimizationFailure(error=str(e), error_type="internal")

    def analyze(self, values: Sequence[float],
                method: Union[str, ClassificationMethod] = ClassificationMethod.QUANTILE,
                options: Options = None,
                seed: Optional[int] = None,
                rng: Optional[np.random.Generator] = None
                ) -> Union[AnalysisResult, OptimizationFailure]:
        """Characterize an arbitrary series into regimes without scheduling"""
        try:
            arr = as_price_array(values)
            generator = self._rng(seed, rng)
            observations = classify(arr, method, options, generator)
            transition = build_transition_matrix(observations)
            emission = build_emission_matrix(arr, method, options, labels=observations)
            path, log_likelihood = decode_with_score(observations, transition, emission)

            labels = [label.value for label in RegimeLabel]
            return AnalysisResult(
                observations=observations,
                regime_path=path,
                transition_matrix=transition,
                emission_matrix=emission,
                log_likelihood=log_likelihood,
                state_counts={k: int(np.count_nonzero(observations == k)) for k in labels},
                path_state_counts={k: int(np.count_nonzero(path == k)) for k in labels},
                stats={
                    'min': float(arr.min()),
                    'max': float(arr.max()),
                    'avg': float(arr.mean()),
                    'count': int(arr.size),
                },
            )
        except OptimizerError as e:
            logger.warning(f"Analysis rejected ({e.error_type}): {e}")
            return OptimizationFailure(error=str(e), error_type=e.error_type)
        except Exception as e:
            logger.exception(f"Analysis failed: {e}")
            return OptimizationFailure(error=str(e), error_type="internal")
