"""
MINT WATCHER

Watches Transfer events sent from the zero address ("mint transfers") and
turns them into newly discovered tokens.

Pipeline per log:
  known address?        -> skip (first discovery wins)
  older than 2h?        -> skip (stale mint, not a new token)
  name()/symbol() fail? -> drop for this pass
  deny-listed symbol?   -> drop
  otherwise             -> registry.add_discovered + scheduler.mark_new

A failing log never aborts the rest of its batch.
"""
import time
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from errors import FailureKind, log_failure
from registry import Token
from .symbol_filter import should_filter_symbol

logger = logging.getLogger(__name__)


class MintWatcher:
    """
    Usage:
        watcher = MintWatcher(adapter, metadata_cache, registry, scheduler, config['watcher'])
        await watcher.poll_once()        # one catch-up pass
        await watcher.run(stop_event)    # forever
    """

    def __init__(self, adapter, metadata_cache, registry, scheduler, config: Dict = None,
                 deny_list: Optional[List[str]] = None,
                 on_discovered: Optional[Callable[[Token], None]] = None,
                 clock=time.time):
        self.adapter = adapter
        self.metadata_cache = metadata_cache
        self.registry = registry
        self.scheduler = scheduler
        self.config = config or {}
        self.deny_list = deny_list
        self.on_discovered = on_discovered
        self.clock = clock

        self.lookback_blocks = self.config.get('lookback_blocks', 1000)
        self.stale_after_seconds = self.config.get('stale_after_seconds', 2 * 60 * 60)
        self.poll_interval = self.config.get('poll_interval_seconds', 4.0)
        self.max_block_range = max(1, self.config.get('max_block_range', 100))
        self.max_concurrent_reads = self.config.get('max_concurrent_reads', 10)

        self.start_block: Optional[int] = None
        self.next_block: Optional[int] = None
        self._read_semaphore: Optional[asyncio.Semaphore] = None

        self.stats = {
            'logs_seen': 0,
            'known_skipped': 0,
            'stale_skipped': 0,
            'unreadable_dropped': 0,
            'symbol_filtered': 0,
            'discovered': 0,
            'log_errors': 0,
        }

    def restart(self):
        """Start over from latest - lookback on the next poll."""
        self.start_block = None
        self.next_block = None

    async def _initialize(self) -> int:
        latest = await self.adapter.get_latest_block_async()
        self.start_block = max(0, latest - self.lookback_blocks)
        self.next_block = self.start_block
        logger.info(f"Watching mint transfers from block {self.start_block}",
                    extra={"stage": "blockchain", "status": "success"})
        return latest

    async def poll_once(self) -> List[Token]:
        """
        Process every mint log between the last processed block and the latest block.

        Returns:
            Tokens discovered in this pass
        """
        if self.next_block is None:
            latest = await self._initialize()
        else:
            latest = await self.adapter.get_latest_block_async()

        discovered = []
        while self.next_block is not None and self.next_block <= latest:
            from_block = self.next_block
            to_block = min(latest, from_block + self.max_block_range - 1)

            logs = await self.adapter.get_mint_logs_async(from_block, to_block)
            discovered.extend(await self.process_logs(logs))

            # restart() during processing resets the cursor
            if self.next_block is not None:
                self.next_block = to_block + 1
        return discovered

    async def process_logs(self, logs: List[Dict]) -> List[Token]:
        """Handle one batch of mint logs; each log is isolated."""
        self.stats['logs_seen'] += len(logs)

        # A mint burst emits many logs for the same token: keep the first
        candidates = {}
        for log in logs:
            try:
                address = log['address'].lower()
            except (KeyError, AttributeError, TypeError) as e:
                self.stats['log_errors'] += 1
                logger.error(f"Error processing token log: {e}", extra={"stage": "blockchain", "status": "error"})
                continue
            candidates.setdefault(address, log)

        results = await asyncio.gather(
            *(self._process_isolated(address, log) for address, log in candidates.items()))
        return [token for token in results if token is not None]

    async def _process_isolated(self, address: str, log: Dict) -> Optional[Token]:
        try:
            return await self.process_log(address, log)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats['log_errors'] += 1
            logger.error(f"Error processing token: {e}",
                         extra={"stage": "blockchain", "status": "error", "address": address})
            return None

    def _get_read_semaphore(self) -> asyncio.Semaphore:
        if self._read_semaphore is None:
            self._read_semaphore = asyncio.Semaphore(self.max_concurrent_reads)
        return self._read_semaphore

    async def process_log(self, address: str, log: Dict) -> Optional[Token]:
        if address in self.registry:
            self.stats['known_skipped'] += 1
            return None

        block_number = int(log['block_number'])

        async with self._get_read_semaphore():
            block_timestamp = await self.adapter.get_block_timestamp_async(block_number)

            now = self.clock()
            if now - block_timestamp > self.stale_after_seconds:
                self.stats['stale_skipped'] += 1
                return None

            metadata = await self.metadata_cache.resolve(address)

        if metadata is None:
            self.stats['unreadable_dropped'] += 1
            return None

        if should_filter_symbol(metadata.symbol, self.deny_list):
            self.stats['symbol_filtered'] += 1
            log_failure(logger, FailureKind.PERMANENT, "blockchain", address,
                        f"Filtering out token with symbol {metadata.symbol}")
            return None

        token = Token(
            address=address,
            name=metadata.name,
            symbol=metadata.symbol,
            discovered_at=float(block_timestamp),
            first_seen=now,
            origin_block=block_number,
        )
        if not self.registry.add_discovered(token):
            # lost a race with another discovery of the same address
            self.stats['known_skipped'] += 1
            return None

        self.stats['discovered'] += 1
        self.scheduler.mark_new(address, now=now)

        if self.on_discovered is not None:
            self.on_discovered(token)
        return token

    async def run(self, stop_event: asyncio.Event):
        logger.info(f"Mint watcher started (poll: {self.poll_interval}s, lookback: {self.lookback_blocks} blocks)",
                    extra={"stage": "blockchain", "status": "pending"})
        while not stop_event.is_set():
            delay = self.poll_interval
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Mint log poll error: {e}",
                             extra={"stage": "blockchain", "status": "error"})
                delay = max(self.poll_interval, 5)  # backoff

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def get_stats(self) -> Dict:
        return {
            **self.stats,
            'start_block': self.start_block,
            'next_block': self.next_block,
        }
