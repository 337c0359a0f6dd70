"""Viterbi decoding of the most likely regime path"""

from typing import Optional, Sequence, Tuple

import numpy as np

from .models import N_REGIMES

PROBABILITY_FLOOR = 1e-3


def _log(matrix: np.ndarray) -> np.ndarray:
    """Log of a probability table with zero/missing entries floored"""
    arr = np.asarray(matrix, dtype=np.float64)
    safe = np.where(np.isfinite(arr) & (arr > 0), arr, PROBABILITY_FLOOR)
    return np.log(safe)


def decode_with_score(observations: Sequence[int], transition_matrix, emission_matrix,
                      initial_probs: Optional[Sequence[float]] = None) -> Tuple[np.ndarray, float]:
    """Most likely state sequence and its log-probability.

    Works in log space: V[t, s] = max_p(V[t-1, p] + log A[p, s]) + log B[s, obs_t].
    Ties resolve to the lowest state index.
    """
    obs = np.asarray(observations, dtype=np.int64)
    if obs.size == 0:
        return np.array([], dtype=np.int64), 0.0

    if initial_probs is None:
        initial_probs = np.full(N_REGIMES, 1.0 / N_REGIMES)
    log_a = _log(transition_matrix)
    log_b = _log(emission_matrix)
    log_pi = _log(initial_probs)

    n_obs, n_states = len(obs), log_a.shape[0]
    scores = np.empty((n_obs, n_states))
    backpointers = np.zeros((n_obs, n_states), dtype=np.int64)

    scores[0] = log_pi + log_b[:, obs[0]]
    for t in range(1, n_obs):
        candidates = scores[t - 1][:, None] + log_a
        backpointers[t] = np.argmax(candidates, axis=0)
        scores[t] = candidates[backpointers[t], np.arange(n_states)] + log_b[:, obs[t]]

    path = np.empty(n_obs, dtype=np.int64)
    path[-1] = int(np.argmax(scores[-1]))
    for t in range(n_obs - 2, -1, -1):
        path[t] = backpointers[t + 1, path[t + 1]]
    return path, float(scores[-1, path[-1]])


def decode(observations: Sequence[int], transition_matrix, emission_matrix,
           initial_probs: Optional[Sequence[float]] = None) -> np.ndarray:
    """Most likely state sequence (empty for empty observations)"""
    path, _ = decode_with_score(observations, transition_matrix, emission_matrix, initial_probs)
    return path
