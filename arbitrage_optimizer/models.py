"""Data models for the arbitrage optimizer"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

import numpy as np

N_REGIMES = 3
MIN_SEARCH_TIMESTEPS = 12


class RegimeLabel(IntEnum):
    """Latent market regime of a single price observation"""
    LOW = 0
    MEDIUM = 1
    HIGH = 2


class ClassificationMethod(str, Enum):
    QUANTILE = "quantile"
    KMEANS = "kmeans"
    VOLATILITY = "volatility"
    ADAPTIVE = "adaptive"
    ZSCORE = "zscore"


class Action(str, Enum):
    CHARGE = "charge"
    IDLE = "idle"
    DISCHARGE = "discharge"


@dataclass
class BatteryParameters:
    """Power and state-of-charge limits of the storage asset"""
    p_max: float
    soc_min: float
    soc_max: float
    efficiency: float
    initial_soc: Optional[float] = None
    target_soc: Optional[float] = None

    @property
    def soc_range(self) -> float:
        return self.soc_max - self.soc_min

    @property
    def start_soc(self) -> float:
        """SoC at the start of the horizon (midpoint of the usable range unless given)"""
        if self.initial_soc is not None:
            return self.initial_soc
        return (self.soc_min + self.soc_max) / 2

    @property
    def end_soc(self) -> float:
        """Lowest SoC allowed at the end of the horizon"""
        if self.target_soc is not None:
            return self.target_soc
        return self.start_soc

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatteryParameters":
        """Build parameters from either snake_case or camelCase keys"""
        def pick(*keys, default=None):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return default

        initial = pick('initial_soc', 'initialSOC')
        target = pick('target_soc', 'targetSOC')
        return cls(
            p_max=float(pick('p_max', 'pMax')),
            soc_min=float(pick('soc_min', 'socMin')),
            soc_max=float(pick('soc_max', 'socMax')),
            efficiency=float(pick('efficiency')),
            initial_soc=float(initial) if initial is not None else None,
            target_soc=float(target) if target is not None else None,
        )


@dataclass
class Schedule:
    """Per-timestep charge/discharge plan with the resulting SoC trajectory"""
    charging: np.ndarray
    discharging: np.ndarray
    soc: np.ndarray
    revenue: np.ndarray
    actions: List[str]

    def __len__(self) -> int:
        return len(self.charging)

    @property
    def total_revenue(self) -> float:
        return float(np.sum(self.revenue))

    def action_counts(self) -> Dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for action in self.actions:
            counts[action] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            'charging': self.charging.tolist(),
            'discharging': self.discharging.tolist(),
            'soc': self.soc.tolist(),
            'revenue': self.revenue.tolist(),
            'actions': list(self.actions),
        }


@dataclass
class OptimizationResult:
    """Schedule, KPIs and the intermediate HMM artifacts of one optimize call"""
    schedule: Schedule
    total_revenue: float
    total_energy_charged: float
    total_energy_discharged: float
    operational_efficiency: float
    avg_price: float
    cycles: int
    vwap_charge: float
    vwap_discharge: float
    method: str
    regime_labels: np.ndarray
    transition_matrix: np.ndarray
    emission_matrix: np.ndarray
    regime_path: np.ndarray
    timestamps: Optional[List[str]] = None
    success: bool = field(default=True, init=False)

    @property
    def spread(self) -> float:
        return self.vwap_discharge - self.vwap_charge

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'method': self.method,
            'schedule': self.schedule.to_dict(),
            'totalRevenue': self.total_revenue,
            'totalEnergyCharged': self.total_energy_charged,
            'totalEnergyDischarged': self.total_energy_discharged,
            'operationalEfficiency': self.operational_efficiency,
            'avgPrice': self.avg_price,
            'cycles': self.cycles,
            'vwapCharge': self.vwap_charge,
            'vwapDischarge': self.vwap_discharge,
            'priceCategories': self.regime_labels.tolist(),
            'transitionMatrix': self.transition_matrix.tolist(),
            'emissionMatrix': self.emission_matrix.tolist(),
            'viterbiPath': self.regime_path.tolist(),
            'timestamps': self.timestamps,
        }


@dataclass
class OptimizationFailure:
    """Structured, recoverable failure returned instead of raising"""
    error: str
    error_type: str = "internal"
    success: bool = field(default=False, init=False)

    @property
    def insufficient_data(self) -> bool:
        return self.error_type == "insufficient_data"

    def to_dict(self) -> Dict[str, Any]:
        return {'success': False, 'error': self.error, 'errorType': self.error_type}


@dataclass
class AnalysisResult:
    """Regime characterization of an arbitrary numeric series"""
    observations: np.ndarray
    regime_path: np.ndarray
    transition_matrix: np.ndarray
    emission_matrix: np.ndarray
    log_likelihood: float
    state_counts: Dict[int, int]
    path_state_counts: Dict[int, int]
    stats: Dict[str, float]
    success: bool = field(default=True, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'observations': self.observations.tolist(),
            'viterbiPath': self.regime_path.tolist(),
            'transitionMatrix': self.transition_matrix.tolist(),
            'emissionMatrix': self.emission_matrix.tolist(),
            'logLikelihood': self.log_likelihood,
            'stateCounts': {str(k): v for k, v in self.state_counts.items()},
            'viterbiStateCounts': {str(k): v for k, v in self.path_state_counts.items()},
            'stats': self.stats,
        }


@dataclass
class PeriodResult:
    """Outcome of optimizing one analysis period of a backtest"""
    period: str
    period_start: str
    period_end: str
    data_points: int
    result: OptimizationResult

    @property
    def method(self) -> str:
        return self.result.method

    @property
    def revenue(self) -> float:
        return self.result.total_revenue


@dataclass
class BacktestSummary:
    """Aggregated results of a backtest over several periods"""
    analysis_type: str
    periods: List[PeriodResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def periods_analyzed(self) -> int:
        return len(self.periods)

    @property
    def total_revenue(self) -> float:
        return sum(p.revenue for p in self.periods)

    @property
    def avg_revenue(self) -> float:
        return self.total_revenue / len(self.periods) if self.periods else 0.0

    @property
    def total_energy_charged(self) -> float:
        return sum(p.result.total_energy_charged for p in self.periods)

    @property
    def total_energy_discharged(self) -> float:
        return sum(p.result.total_energy_discharged for p in self.periods)

    @property
    def total_cycles(self) -> int:
        return sum(p.result.cycles for p in self.periods)

    @property
    def revenue_per_unit_discharged(self) -> float:
        discharged = self.total_energy_discharged
        return self.total_revenue / discharged if discharged > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'analysisType': self.analysis_type,
            'totalRevenue': self.total_revenue,
            'avgRevenue': self.avg_revenue,
            'totalEnergyCharged': self.total_energy_charged,
            'totalEnergyDischarged': self.total_energy_discharged,
            'totalCycles': self.total_cycles,
            'revenuePerUnitDischarged': self.revenue_per_unit_discharged,
            'periodsAnalyzed': self.periods_analyzed,
            'warnings': list(self.warnings),
            'results': [
                {
                    'period': p.period,
                    'periodStart': p.period_start,
                    'periodEnd': p.period_end,
                    'dataPoints': p.data_points,
                    'method': p.method,
                    'revenue': p.revenue,
                    'cycles': p.result.cycles,
                }
                for p in self.periods
            ],
        }
