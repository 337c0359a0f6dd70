"""Transition and emission matrices of the regime HMM"""

import logging
from typing import Optional, Sequence

import numpy as np

from .models import Action, N_REGIMES
from .regime_classifier import Options, as_price_array, classify

logger = logging.getLogger(__name__)

TRANSITION_PSEUDO_COUNT = 0.1
EMISSION_PSEUDO_COUNT = 1.0
CHARGE_PRICE_RATIO = 0.8
DISCHARGE_PRICE_RATIO = 1.2

# Column order of the emission matrix
ACTION_COLUMNS = (Action.CHARGE, Action.IDLE, Action.DISCHARGE)


def build_transition_matrix(labels: Sequence[int]) -> np.ndarray:
    """Laplace-smoothed regime→regime transition frequencies.

    A regime with no observed outgoing transition gets a uniform row.
    """
    labels = np.asarray(labels, dtype=np.int64)
    counts = np.zeros((N_REGIMES, N_REGIMES))
    if len(labels) > 1:
        np.add.at(counts, (labels[:-1], labels[1:]), 1)

    matrix = np.full((N_REGIMES, N_REGIMES), 1.0 / N_REGIMES)
    row_sums = counts.sum(axis=1)
    observed = row_sums > 0
    matrix[observed] = ((counts[observed] + TRANSITION_PSEUDO_COUNT)
                        / (row_sums[observed, None] + N_REGIMES * TRANSITION_PSEUDO_COUNT))
    return matrix


def heuristic_actions(prices: np.ndarray) -> np.ndarray:
    """Column index (charge/idle/discharge) a naive trader would pick at each price"""
    mean = prices.mean()
    actions = np.full(len(prices), ACTION_COLUMNS.index(Action.IDLE), dtype=np.int64)
    actions[prices < mean * CHARGE_PRICE_RATIO] = ACTION_COLUMNS.index(Action.CHARGE)
    actions[prices > mean * DISCHARGE_PRICE_RATIO] = ACTION_COLUMNS.index(Action.DISCHARGE)
    return actions


def build_emission_matrix(prices: Sequence[float], method=None, options: Options = None,
                          rng: Optional[np.random.Generator] = None,
                          labels: Optional[Sequence[int]] = None) -> np.ndarray:
    """Regime → {charge, idle, discharge} propensities, Laplace-smoothed.

    Labels are re-derived with the given classification method unless the
    caller already has them.
    """
    arr = as_price_array(prices)
    if labels is None:
        labels = classify(arr, method, options, rng)
    labels = np.asarray(labels, dtype=np.int64)

    counts = np.zeros((N_REGIMES, len(ACTION_COLUMNS)))
    np.add.at(counts, (labels, heuristic_actions(arr)), 1)

    smoothed = counts + EMISSION_PSEUDO_COUNT
    matrix = smoothed / smoothed.sum(axis=1, keepdims=True)
    logger.debug(f"build_emission_matrix counts={counts.astype(int).tolist()}")
    return matrix
