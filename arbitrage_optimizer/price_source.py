"""Day-ahead price acquisition (OTE) for the optimizer"""

import asyncio
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from ote_cr_price_fetcher import PriceFetcher

from .price_cache import PriceCache

logger = logging.getLogger(__name__)

SLOTS_PER_DAY = {True: 24, False: 96}


class PriceSource:
    """Fetches day-ahead prices per day and flattens them into a series"""

    def __init__(self, cache: Optional[PriceCache] = None):
        self.price_fetcher = PriceFetcher()
        self.price_cache = cache or PriceCache()

    async def get_prices_for_day(self, day: date, hourly: bool = True) -> Optional[List[float]]:
        """Get prices for a specific day (cached once published)"""
        try:
            cached = self.price_cache.get(day, hourly)
            if cached is not None:
                return cached

            prices_list = await self.price_fetcher.fetch_prices_for_date(day, hourly=hourly)

            expected = SLOTS_PER_DAY[hourly]
            if not prices_list or len(prices_list) != expected:
                logger.error(f"Invalid price data for {day}: got {len(prices_list) if prices_list else 0} values")
                return None

            prices = [float(p) for p in prices_list]
            self.price_cache.set(day, hourly, prices)
            return prices
        except Exception as e:
            logger.error(f"Failed to get prices for {day}: {e}")
            return None

    async def get_price_series(self, start: date, days: int = 1,
                               hourly: bool = True) -> Tuple[List[float], List[str]]:
        """Prices and ISO timestamps for consecutive days; missing days are skipped"""
        day_list = [start + timedelta(days=i) for i in range(days)]
        results = await asyncio.gather(*(self.get_prices_for_day(d, hourly) for d in day_list))

        step = timedelta(minutes=60 if hourly else 15)
        prices: List[float] = []
        timestamps: List[str] = []
        for day, day_prices in zip(day_list, results):
            if day_prices is None:
                logger.warning(f"No prices for {day}, skipping")
                continue
            midnight = datetime.combine(day, time())
            prices.extend(day_prices)
            timestamps.extend((midnight + slot * step).isoformat() for slot in range(len(day_prices)))

        logger.info(f"Loaded {len(prices)} prices for {start} (+{days - 1} days)")
        return prices, timestamps
