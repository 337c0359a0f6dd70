"""Price caching for fetched day-ahead prices"""

import json
import logging
import os
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_ENTRIES = 400


class PriceCache:
    """JSON file cache of per-day price lists, keyed by date and resolution"""

    def __init__(self, cache_dir: Optional[str] = None, max_entries: int = MAX_ENTRIES):
        self.max_entries = max_entries
        # Use /tmp in Lambda (ephemeral but works within invocation)
        self._is_lambda = os.environ.get('AWS_LAMBDA_FUNCTION_NAME') is not None
        if cache_dir is None:
            cache_dir = '/tmp' if self._is_lambda else 'logs'
        Path(cache_dir).mkdir(parents=True, exist_ok=True)
        self._price_cache_file = Path(cache_dir) / 'price_cache.json'

    @staticmethod
    def key(day: date, hourly: bool) -> str:
        return f"{day}/{'60' if hourly else '15'}min"

    def load(self) -> Dict[str, List[float]]:
        """Load price cache from disk"""
        if not self._price_cache_file.exists():
            return {}
        try:
            with open(self._price_cache_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load price cache: {e}")
            return {}

    def save(self, cache: Dict[str, List[float]]) -> None:
        """Save price cache to disk"""
        try:
            with open(self._price_cache_file, 'w') as f:
                json.dump(cache, f)
        except IOError as e:
            logger.warning(f"Failed to save price cache: {e}")

    def cleanup(self, cache: Dict[str, List[float]]) -> Dict[str, List[float]]:
        """Drop the oldest days once the cache holds more than max_entries"""
        stale = sorted(cache)[:max(0, len(cache) - self.max_entries)]
        for key in stale:
            del cache[key]
            logger.debug(f"Removed stale price cache entry for {key}")
        return cache

    def get(self, day: date, hourly: bool) -> Optional[List[float]]:
        """Get cached prices for a date"""
        cache = self.load()
        key = self.key(day, hourly)
        if key in cache:
            logger.debug(f"price_cache.get cached=true key={key}")
            return cache[key]
        return None

    def set(self, day: date, hourly: bool, prices: List[float]) -> None:
        """Cache prices for a date (only once published, i.e. up to tomorrow)"""
        tomorrow = datetime.now().date() + timedelta(days=1)
        key = self.key(day, hourly)
        if day > tomorrow:
            logger.debug(f"price_cache.set cached=false key={key} reason=not_published")
            return
        cache = self.load()
        cache[key] = list(prices)
        self.save(self.cleanup(cache))
        logger.debug(f"price_cache.set cached=true key={key} slots={len(prices)}")
