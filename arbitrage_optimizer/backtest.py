"""Backtesting over analysis periods (months, quarters, ...)"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .battery_manager import validate_parameters
from .errors import InputError
from .models import (
    BacktestSummary,
    ClassificationMethod,
    MIN_SEARCH_TIMESTEPS,
    OptimizationResult,
    PeriodResult,
)
from .optimizer import ArbitrageOptimizer, ParamsLike

logger = logging.getLogger(__name__)

HOURS_IN_PERIOD = {
    'daily': 24,
    'weekly': 24 * 7,
    'monthly': 24 * 30,
    'quarterly': 24 * 91,
    'yearly': 24 * 365,
}
MIN_COMPLETENESS = 0.5
PERIOD_TYPES = tuple(HOURS_IN_PERIOD) + ('continuous',)

Timestamp = Union[str, datetime]


def _to_datetime(value: Timestamp) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def period_key(timestamp: Timestamp, period_type: str) -> str:
    """Grouping key of a timestamp for the given period type"""
    dt = _to_datetime(timestamp)
    if period_type == 'daily':
        return dt.strftime('%Y-%m-%d')
    if period_type == 'weekly':
        year, week, _ = dt.isocalendar()
        return f"{year}-W{week:02d}"
    if period_type == 'monthly':
        return f"{dt.year}-{dt.month:02d}"
    if period_type == 'quarterly':
        return f"{dt.year}-Q{(dt.month - 1) // 3 + 1}"
    if period_type == 'yearly':
        return str(dt.year)
    return 'continuous'


def group_by_period(timestamps: Sequence[Timestamp], prices: Sequence[float],
                    period_type: str) -> Dict[str, Tuple[List[str], List[float]]]:
    """Split a price history into ordered (timestamps, prices) groups"""
    if len(timestamps) != len(prices):
        raise ValueError(f"Got {len(timestamps)} timestamps for {len(prices)} prices")
    groups: Dict[str, Tuple[List[str], List[float]]] = OrderedDict()
    for ts, price in zip(timestamps, prices):
        key = period_key(ts, period_type)
        stamps, values = groups.setdefault(key, ([], []))
        stamps.append(ts.isoformat() if isinstance(ts, datetime) else str(ts))
        values.append(price)
    return groups


def check_completeness(n_points: int, period_type: str, interval_minutes: int = 60) -> Tuple[bool, float, str]:
    """Whether a period holds at least half of its expected data points"""
    if n_points == 0:
        return False, 0.0, 'No data'
    if period_type not in HOURS_IN_PERIOD:
        return True, 1.0, 'Complete'
    expected = HOURS_IN_PERIOD[period_type] * 60 // interval_minutes
    completeness = n_points / expected
    if completeness >= MIN_COMPLETENESS:
        return True, completeness, 'Complete'
    return False, completeness, f"Incomplete: {completeness * 100:.1f}% ({n_points}/{expected} points)"


class Backtester:
    """Optimizes every analysis period independently"""

    def __init__(self, optimizer: Optional[ArbitrageOptimizer] = None, interval_minutes: int = 60):
        self.optimizer = optimizer or ArbitrageOptimizer()
        self.interval_minutes = interval_minutes

    def run(self, timestamps: Sequence[Timestamp], prices: Sequence[float], params: ParamsLike,
            period_type: str = 'monthly',
            method: Union[str, ClassificationMethod] = ClassificationMethod.QUANTILE,
            options: Optional[Dict[str, float]] = None,
            seed: Optional[int] = None) -> BacktestSummary:
        if period_type not in PERIOD_TYPES:
            raise InputError(f"Unknown period type: {period_type}")
        battery = self.optimizer.battery_parameters(params)
        validate_parameters(battery)
        summary = BacktestSummary(analysis_type=period_type)
        groups = group_by_period(timestamps, prices, period_type)
        logger.info(f"Backtest: {len(groups)} {period_type} periods")

        for index, (key, (stamps, values)) in enumerate(groups.items()):
            valid, _, reason = check_completeness(len(values), period_type, self.interval_minutes)
            if not valid:
                summary.warnings.append(f"Skipping {key}: {reason}")
                logger.warning(f"Skipping {key}: {reason}")
                continue
            if len(values) < MIN_SEARCH_TIMESTEPS:
                message = f"Skipping {key}: insufficient data ({len(values)} < {MIN_SEARCH_TIMESTEPS})"
                summary.warnings.append(message)
                logger.warning(message)
                continue

            period_seed = None if seed is None else seed + index
            result = self._optimize_period(key, values, stamps, battery, method, options, period_seed)
            if result is None:
                summary.warnings.append(f"Skipping {key}: optimization failed")
                continue

            summary.periods.append(PeriodResult(
                period=key,
                period_start=stamps[0],
                period_end=stamps[-1],
                data_points=len(values),
                result=result,
            ))
            logger.info(f"{key}: revenue={result.total_revenue:.2f} method={result.method}")

        logger.info(f"Backtest complete: periods={summary.periods_analyzed} "
                    f"total_revenue={summary.total_revenue:.2f}")
        return summary

    def _optimize_period(self, key, values, stamps, params, method, options,
                         seed) -> Optional[OptimizationResult]:
        result = self.optimizer.optimize(values, params, method, options, stamps, seed=seed)
        if result.success:
            return result

        logger.warning(f"{key}: main optimization failed ({result.error}), using simplified")
        try:
            return self.optimizer.simple_optimize(values, params, stamps)
        except ValueError as e:
            logger.error(f"{key}: simplified optimization failed: {e}")
            return None
