"""
MARKET REFRESHER

Background loop that re-enters the scheduler for every tracked token on a
fixed tick and fetches the ones that are due.

- at most `max_concurrency` market-data requests in flight
- an address already in flight is never fetched twice
- a tick's batch drains fully before the next tick looks at the same tokens
"""

import time
import asyncio
import logging
from typing import Dict, List, Optional, Set

from registry import Token

logger = logging.getLogger(__name__)


class MarketRefresher:
    """
    Usage:
        refresher = MarketRefresher(registry, scheduler, fetcher, config)
        await refresher.enrich(address)          # one token, now
        await refresher.refresh_once()           # every due token
        await refresher.run(stop_event)          # forever
    """

    def __init__(self, registry, scheduler, fetcher, config: Dict = None, clock=time.time):
        self.registry = registry
        self.scheduler = scheduler
        self.fetcher = fetcher
        self.config = config or {}
        self.clock = clock

        self.interval_seconds = self.config.get('interval_seconds', 5)
        self.max_concurrency = self.config.get('max_concurrency', 5)

        self._semaphore: Optional[asyncio.Semaphore] = None
        self._in_flight: Set[str] = set()
        # Bumped by clear(); fetches started before a clear are not merged
        self._generation = 0

        self.stats = {
            'ticks': 0,
            'fetches': 0,
            'enriched': 0,
            'errors': 0,
            'stale_results_dropped': 0,
        }

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
        return self._semaphore

    def is_in_flight(self, address: str) -> bool:
        return address.lower() in self._in_flight

    async def enrich(self, address: str) -> Optional[Token]:
        """
        Fetch market data for one token and merge it into the registry.

        Returns:
            The updated token, or None if skipped or no data
        """
        key = address.lower()
        if key in self._in_flight:
            return None

        generation = self._generation
        self._in_flight.add(key)
        try:
            async with self._get_semaphore():
                self.stats['fetches'] += 1
                snapshot = await self.fetcher.fetch(key)

            if generation != self._generation:
                self.stats['stale_results_dropped'] += 1
                return None
            if snapshot is None:
                return None

            updated = self.registry.update(
                key,
                pair_created_at=snapshot.pair_created_at,
                market_cap=snapshot.market_cap,
                price_change_m5=snapshot.price_change_m5,
                price_change_h1=snapshot.price_change_h1,
                logo_uri=snapshot.logo_uri,
                last_enriched_at=snapshot.fetched_at,
            )
            if updated is not None:
                self.stats['enriched'] += 1
            return updated
        finally:
            if generation == self._generation:
                self._in_flight.discard(key)

    def due_addresses(self, now: Optional[float] = None) -> List[str]:
        now = self.clock() if now is None else now
        return [
            address for address in self.registry.addresses()
            if address not in self._in_flight and self.scheduler.should_check(address, now)
        ]

    async def refresh_once(self, now: Optional[float] = None) -> int:
        """
        Fetch every due token and wait for the whole batch.

        Returns:
            Number of tokens fetched this tick
        """
        due = self.due_addresses(now)
        self.stats['ticks'] += 1
        if not due:
            return 0

        logger.debug(f"Refreshing {len(due)} tokens", extra={"stage": "api", "status": "pending"})
        results = await asyncio.gather(*(self.enrich(a) for a in due), return_exceptions=True)

        for address, result in zip(due, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                self.stats['errors'] += 1
                logger.error(f"Error refreshing token: {result}",
                             extra={"stage": "api", "status": "error", "address": address})
        return len(due)

    async def run(self, stop_event: asyncio.Event):
        logger.info(f"Market refresher started (tick: {self.interval_seconds}s, "
                    f"concurrency: {self.max_concurrency})", extra={"stage": "system"})
        while not stop_event.is_set():
            try:
                await self.refresh_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Refresh loop error: {e}", extra={"stage": "system", "status": "error"})

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def clear(self):
        """Forget in-flight fetches; their results are discarded when they land."""
        self._in_flight.clear()
        self._generation += 1

    def get_stats(self) -> Dict:
        return {**self.stats, 'in_flight': len(self._in_flight)}
