"""
TOKEN TRACKER

Wires the discovery pipeline together and owns its background activity:

  MintWatcher ──► TokenRegistry ◄── MarketRefresher ◄── MarketCheckScheduler
       │               │                  │
  ContractMetadataCache │            DexScreenerAPI
                        ▼
             SecurityClassifier ──► token_filters.apply_filters ──► ranked list

Two independent streams mutate the registry: the mint watcher (new tokens)
and the market refresher (enrichment). Enrichment of a new token runs as a
background task so a slow fetch never holds up the next mint log.
"""

import time
import asyncio
import logging
from typing import Dict, List, Optional, Set

from config import load_tracker_config
from chain_adapters import get_adapter_for_chain
from discovery import ContractMetadataCache, MintWatcher
from offchain import DexScreenerAPI, MarketCheckScheduler, MarketRefresher
from registry import (
    Token,
    TokenRegistry,
    CONTRACTS_NAMESPACE,
    MARKET_CHECKS_NAMESPACE,
)
from registry.persistence import serialize_tokens
from token_filters import FilterFlags, apply_filters
from token_security import PlatformVerifier, SecurityClassifier

logger = logging.getLogger(__name__)


class TokenTracker:
    """
    Usage:
        tracker = TokenTracker(config, store=TrackerStateStore(path))
        tracker.restore()
        await tracker.run(stop_event)
        tokens = await tracker.ranked_tokens()
    """

    def __init__(self, config: Dict = None, adapter=None, fetcher=None, verifier=None,
                 store=None, clock=time.time):
        self.config = config or load_tracker_config()
        self.clock = clock

        self.adapter = adapter or get_adapter_for_chain('base', self.config.get('chain', {}))
        self.scheduler = MarketCheckScheduler(self.config.get('scheduler', {}), clock=clock)
        self.metadata_cache = ContractMetadataCache(self.adapter, clock=clock)

        security_config = self.config.get('security', {})
        self.verifier = verifier or PlatformVerifier(security_config)
        self.classifier = SecurityClassifier(self.verifier, security_config)

        self.registry = TokenRegistry(caches=[self.metadata_cache, self.scheduler, self.classifier])

        self.fetcher = fetcher or DexScreenerAPI(self.config.get('dexscreener', {}), clock=clock)
        if getattr(self.fetcher, 'scheduler', None) is None:
            self.fetcher.scheduler = self.scheduler

        refresher_config = self.config.get('refresher', {})
        self.refresher = MarketRefresher(self.registry, self.scheduler, self.fetcher,
                                         refresher_config, clock=clock)
        self.registry.attach_cache(self.refresher)
        self.watcher = MintWatcher(
            self.adapter, self.metadata_cache, self.registry, self.scheduler,
            self.config.get('watcher', {}),
            deny_list=self.config.get('symbols', {}).get('deny_list'),
            on_discovered=self._on_discovered,
            clock=clock,
        )

        self.watchlist = [a.lower() for a in security_config.get('community_tokens', [])]
        self.watchlist_interval = refresher_config.get('watchlist_interval_seconds', 30)
        self.filter_flags = FilterFlags.from_config(self.config.get('filters', {}))

        self.store = store
        self.flush_interval = self.config.get('persistence', {}).get('flush_interval_seconds', 5)
        self._unsubscribe_persist = None
        self._dirty = False
        self._flush_lock: Optional[asyncio.Lock] = None
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def restore(self):
        """Reload persisted state and track registry changes for the next flush()."""
        if self.store is None:
            return

        state = self.store.load()
        self.metadata_cache.load(state.get(CONTRACTS_NAMESPACE, {}))
        self.scheduler.load(state.get(MARKET_CHECKS_NAMESPACE, {}))
        tokens = self.store.load_tokens()
        if tokens:
            self.registry.load(tokens)
        self._dirty = False

        if self._unsubscribe_persist is None:
            self._unsubscribe_persist = self.registry.subscribe(self._mark_dirty)

    def _mark_dirty(self, changed: List[str]):
        self._dirty = True

    def _get_flush_lock(self) -> asyncio.Lock:
        if self._flush_lock is None:
            self._flush_lock = asyncio.Lock()
        return self._flush_lock

    async def flush(self) -> bool:
        """
        Write the state file if anything changed since the last write.

        The snapshot is taken on the event loop; the file write runs in a
        worker thread.

        Returns:
            True if a write happened
        """
        if self.store is None or not self._dirty:
            return False

        async with self._get_flush_lock():
            if not self._dirty:
                return False
            self._dirty = False
            state = {
                self.store.tokens_namespace: serialize_tokens(self.registry.snapshot()),
                CONTRACTS_NAMESPACE: self.metadata_cache.to_dict(),
                MARKET_CHECKS_NAMESPACE: self.scheduler.to_dict(),
            }
            try:
                await asyncio.to_thread(self.store.save, state)
            except OSError as e:
                self._dirty = True
                logger.error(f"Error saving tracker state: {e}", extra={"stage": "system", "status": "error"})
                return False
        return True

    async def _flush_loop(self, stop_event: asyncio.Event):
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.flush_interval)
            except asyncio.TimeoutError:
                pass
            await self.flush()

    # ------------------------------------------------------------------
    # Discovery & enrichment
    # ------------------------------------------------------------------

    def _on_discovered(self, token: Token):
        # New identity for this address: drop any earlier platform answer
        self.classifier.invalidate(token.address)
        self._spawn(self.refresher.enrich(token.address), name=f"enrich-{token.key[:10]}")

    def _spawn(self, coro, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task {task.get_name()} failed: {error}",
                         extra={"stage": "system", "status": "error"})

    async def drain(self):
        """Wait for every pending background enrichment."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def track_watchlist(self) -> List[Token]:
        """
        Add community-voted tokens that are not tracked yet.

        A watch-list token is only added once it has a pair and price data.
        """
        added = []
        for address in self.watchlist:
            if address in self.registry:
                continue
            try:
                token = await self._track_watchlist_token(address)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error fetching popular vote token: {e}",
                             extra={"stage": "system", "status": "error", "address": address})
                continue
            if token is not None:
                added.append(token)
        return added

    async def _track_watchlist_token(self, address: str) -> Optional[Token]:
        metadata = await self.metadata_cache.resolve(address)
        if metadata is None:
            return None

        snapshot = await self.fetcher.fetch(address)
        if snapshot is None or snapshot.pair_created_at is None:
            return None
        if snapshot.price_change_m5 is None and snapshot.price_change_h1 is None:
            return None

        now = self.clock()
        return self.registry.merge(Token(
            address=address,
            name=metadata.name,
            symbol=metadata.symbol,
            discovered_at=now,
            first_seen=now,
            origin_block=0,
            pair_created_at=snapshot.pair_created_at,
            market_cap=snapshot.market_cap,
            price_change_m5=snapshot.price_change_m5,
            price_change_h1=snapshot.price_change_h1,
            last_enriched_at=snapshot.fetched_at,
            logo_uri=snapshot.logo_uri,
            is_manually_tracked=True,
        ))

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def ranked_tokens(self, flags: Optional[FilterFlags] = None) -> List[Token]:
        """Filtered, newest-first view of the registry."""
        tokens = self.registry.snapshot()
        statuses = await self.classifier.classify_many(t.address for t in tokens)
        return apply_filters(tokens, flags or self.filter_flags, statuses, now=self.clock())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self):
        """Clear the registry and every cache in one step."""
        self.registry.reset()

    async def refresh(self):
        """Forget everything, persisted state included, and rediscover from latest - lookback."""
        for task in list(self._background):
            task.cancel()
        await self.drain()

        # A flush already writing must not resurrect the old file
        async with self._get_flush_lock():
            self.reset()
            if self.store is not None:
                self.store.clear()
            self._dirty = False
        self.watcher.restart()
        logger.info("Tracker refreshed", extra={"stage": "system", "status": "success"})

    async def run_once(self) -> List[Token]:
        """One discovery pass, one watch-list pass and one refresh tick."""
        await self.watcher.poll_once()
        await self.track_watchlist()
        await self.drain()
        await self.refresher.refresh_once()
        await self.flush()
        return await self.ranked_tokens()

    async def _watchlist_loop(self, stop_event: asyncio.Event):
        while not stop_event.is_set():
            try:
                await self.track_watchlist()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Watch-list loop error: {e}", extra={"stage": "system", "status": "error"})
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.watchlist_interval)
            except asyncio.TimeoutError:
                pass

    async def run(self, stop_event: asyncio.Event):
        tasks = [
            asyncio.create_task(self.watcher.run(stop_event), name="mint-watcher"),
            asyncio.create_task(self.refresher.run(stop_event), name="market-refresher"),
        ]
        if self.watchlist:
            tasks.append(asyncio.create_task(self._watchlist_loop(stop_event), name="watchlist"))
        if self.store is not None:
            tasks.append(asyncio.create_task(self._flush_loop(stop_event), name="state-flush"))

        logger.info(f"Started {len(tasks)} background tasks", extra={"stage": "system"})
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()

    async def close(self):
        for task in list(self._background):
            task.cancel()
        await self.drain()
        for client in (self.fetcher, self.verifier):
            close = getattr(client, 'close', None)
            if close is not None:
                await close()
        await self.flush()
        if self._unsubscribe_persist is not None:
            self._unsubscribe_persist()
            self._unsubscribe_persist = None

    def get_stats(self) -> Dict:
        stats = {
            'registry': self.registry.get_stats(),
            'scheduler': self.scheduler.get_stats(),
            'metadata_cache': self.metadata_cache.get_stats(),
            'security': self.classifier.get_stats(),
            'watcher': self.watcher.get_stats(),
            'refresher': self.refresher.get_stats(),
        }
        if hasattr(self.fetcher, 'get_stats'):
            stats['market_data'] = self.fetcher.get_stats()
        return stats
