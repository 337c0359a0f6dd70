"""Price regime classification (Low/Medium/High)"""

import logging
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import InputError
from .models import ClassificationMethod, N_REGIMES, RegimeLabel

logger = logging.getLogger(__name__)

Options = Optional[Dict[str, float]]


def as_price_array(prices: Sequence[float]) -> np.ndarray:
    """Validate and convert a price series to a float array"""
    try:
        arr = np.asarray(prices, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InputError(f"Price series is not numeric: {e}") from e
    if arr.ndim != 1:
        raise InputError(f"Price series must be one-dimensional, got shape {arr.shape}")
    if arr.size == 0:
        raise InputError("No price data provided")
    if not np.all(np.isfinite(arr)):
        raise InputError("Price series contains NaN or infinite values")
    return arr


def _snake_case(key: str) -> str:
    return ''.join(f"_{c.lower()}" if c.isupper() else c for c in key)


def _label_by_band(prices: np.ndarray, centre: np.ndarray, band: np.ndarray) -> np.ndarray:
    labels = np.full(len(prices), RegimeLabel.MEDIUM, dtype=np.int64)
    labels[prices < centre - band] = RegimeLabel.LOW
    labels[prices > centre + band] = RegimeLabel.HIGH
    return labels


def _rolling_stats(prices: np.ndarray, window: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Trailing-window mean, population std and sample count at every position"""
    n = len(prices)
    csum = np.concatenate(([0.0], np.cumsum(prices)))
    csq = np.concatenate(([0.0], np.cumsum(prices ** 2)))
    ends = np.arange(1, n + 1)
    starts = np.maximum(0, ends - window)
    counts = ends - starts
    means = (csum[ends] - csum[starts]) / counts
    variances = (csq[ends] - csq[starts]) / counts - means ** 2
    return means, np.sqrt(np.maximum(variances, 0.0)), counts


class RegimeStrategy:
    """Base class for one classification method"""

    method: ClassificationMethod
    defaults: Dict[str, float] = {}

    def settings(self, options: Options) -> Dict[str, float]:
        merged = dict(self.defaults)
        if options:
            # Accept camelCase keys (lowThreshold) as sent by the transport layer
            merged.update({_snake_case(k): v for k, v in options.items() if v is not None})
        return merged

    def classify(self, prices: np.ndarray, options: Options = None,
                 rng: Optional[np.random.Generator] = None) -> np.ndarray:
        raise NotImplementedError


class QuantileStrategy(RegimeStrategy):
    """Label by position relative to two percentile cut points"""

    method = ClassificationMethod.QUANTILE
    defaults = {'low_percentile': 33, 'high_percentile': 67}

    def classify(self, prices, options=None, rng=None):
        opts = self.settings(options)
        ordered = np.sort(prices)
        n = len(ordered)
        low_idx = min(n - 1, int(np.floor(n * opts['low_percentile'] / 100)))
        high_idx = min(n - 1, int(np.floor(n * opts['high_percentile'] / 100)))
        low_cut, high_cut = ordered[low_idx], ordered[high_idx]

        labels = np.full(n, RegimeLabel.HIGH, dtype=np.int64)
        labels[prices <= high_cut] = RegimeLabel.MEDIUM
        labels[prices <= low_cut] = RegimeLabel.LOW
        logger.debug(f"classify method=quantile low_cut={low_cut:.2f} high_cut={high_cut:.2f}")
        return labels


class KMeansStrategy(RegimeStrategy):
    """One-dimensional k-means (k=3) with k-means++ seeding"""

    method = ClassificationMethod.KMEANS
    defaults = {'max_iterations': 100, 'tolerance': 1e-6}

    def _seed_centroids(self, prices: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        centroids = [prices[rng.integers(len(prices))]]
        for _ in range(1, N_REGIMES):
            distances = np.min((prices[:, None] - np.array(centroids)[None, :]) ** 2, axis=1)
            total = distances.sum()
            if total <= 0:
                centroids.append(prices[rng.integers(len(prices))])
                continue
            target = rng.random() * total
            idx = int(np.searchsorted(np.cumsum(distances), target))
            centroids.append(prices[min(idx, len(prices) - 1)])
        return np.array(centroids, dtype=np.float64)

    def classify(self, prices, options=None, rng=None):
        opts = self.settings(options)
        rng = rng if rng is not None else np.random.default_rng()
        centroids = self._seed_centroids(prices, rng)

        iterations = 0
        assignment = np.zeros(len(prices), dtype=np.int64)
        for iterations in range(1, int(opts['max_iterations']) + 1):
            assignment = np.argmin(np.abs(prices[:, None] - centroids[None, :]), axis=1)
            updated = centroids.copy()
            for k in range(N_REGIMES):
                members = prices[assignment == k]
                if members.size:
                    updated[k] = members.mean()
            movement = np.max(np.abs(updated - centroids))
            centroids = updated
            if movement < opts['tolerance']:
                break

        # Relabel so that the cheapest cluster is always LOW
        order = np.argsort(centroids, kind='stable')
        rank = np.empty(N_REGIMES, dtype=np.int64)
        rank[order] = np.arange(N_REGIMES)
        logger.debug(f"classify method=kmeans iterations={iterations} centroids={np.sort(centroids).round(2).tolist()}")
        return rank[assignment]


class VolatilityStrategy(RegimeStrategy):
    """Switch between local and global reference levels depending on local volatility"""

    method = ClassificationMethod.VOLATILITY
    defaults = {'window': 24, 'volatility_threshold': 1.5, 'sensitivity': 0.5}

    def classify(self, prices, options=None, rng=None):
        opts = self.settings(options)
        window = int(opts['window'])
        global_mean, global_std = prices.mean(), prices.std()

        if len(prices) < window:
            logger.debug(f"classify method=volatility fallback=global n={len(prices)} window={window}")
            return _label_by_band(prices, np.full(len(prices), global_mean),
                                  np.full(len(prices), opts['sensitivity'] * global_std))

        means, stds, counts = _rolling_stats(prices, window)
        ratio = stds / global_std
        local = (ratio > opts['volatility_threshold']) & (counts >= max(2, window // 2))
        centre = np.where(local, means, global_mean)
        band = opts['sensitivity'] * np.where(local, stds, global_std)
        logger.debug(f"classify method=volatility local_points={int(local.sum())} n={len(prices)}")
        return _label_by_band(prices, centre, band)


class AdaptiveThresholdStrategy(RegimeStrategy):
    """Rolling mean ± sensitivity·std band with a minimum width"""

    method = ClassificationMethod.ADAPTIVE
    defaults = {'window': 24, 'sensitivity': 0.5, 'min_band_fraction': 0.05}

    def classify(self, prices, options=None, rng=None):
        opts = self.settings(options)
        window = int(opts['window'])

        if len(prices) < window:
            means = np.full(len(prices), prices.mean())
            stds = np.full(len(prices), prices.std())
        else:
            means, stds, counts = _rolling_stats(prices, window)
            warmup = counts < max(2, window // 2)
            means = np.where(warmup, prices.mean(), means)
            stds = np.where(warmup, prices.std(), stds)

        band = opts['sensitivity'] * stds
        min_band = opts['min_band_fraction'] * np.abs(means)
        band = np.maximum(band, min_band)
        return _label_by_band(prices, means, band)


class ZScoreStrategy(RegimeStrategy):
    """Global z-score against low/high cutoffs"""

    method = ClassificationMethod.ZSCORE
    defaults = {'low_threshold': -0.5, 'high_threshold': 0.5}

    def classify(self, prices, options=None, rng=None):
        opts = self.settings(options)
        z = (prices - prices.mean()) / prices.std()
        labels = np.full(len(prices), RegimeLabel.MEDIUM, dtype=np.int64)
        labels[z < opts['low_threshold']] = RegimeLabel.LOW
        labels[z > opts['high_threshold']] = RegimeLabel.HIGH
        return labels


STRATEGIES: Dict[ClassificationMethod, RegimeStrategy] = {
    s.method: s for s in (
        QuantileStrategy(),
        KMeansStrategy(),
        VolatilityStrategy(),
        AdaptiveThresholdStrategy(),
        ZScoreStrategy(),
    )
}


def resolve_method(method: Union[str, ClassificationMethod, None]) -> ClassificationMethod:
    if method is None:
        return ClassificationMethod.QUANTILE
    try:
        return ClassificationMethod(method)
    except ValueError:
        raise InputError(f"Unknown categorization method: {method}") from None


def classify(prices: Sequence[float],
             method: Union[str, ClassificationMethod, None] = ClassificationMethod.QUANTILE,
             options: Options = None,
             rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Label every price observation with a RegimeLabel value.

    Output has the same length as the input. A series without spread is
    labelled MEDIUM everywhere regardless of method.
    """
    arr = as_price_array(prices)
    strategy = STRATEGIES[resolve_method(method)]

    if np.ptp(arr) == 0:
        logger.debug(f"classify method={strategy.method.value} degenerate=zero_variance n={len(arr)}")
        return np.full(len(arr), RegimeLabel.MEDIUM, dtype=np.int64)

    return strategy.classify(arr, options, rng)
