"""
CONTRACT METADATA CACHE

Memoizes name()/symbol() per lower-cased address. Names and symbols never
change, so a hit is kept forever and skips both contract reads.

A failed read is NOT cached: a flaky RPC must not blacklist a real token.
Concurrent lookups of the same address share one pair of reads.
"""
import time
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from errors import ContractReadError, FailureKind, log_failure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractMetadata:
    name: str
    symbol: str
    resolved_at: float


class ContractMetadataCache:
    """
    Usage:
        cache = ContractMetadataCache(adapter)
        meta = await cache.resolve("0xabc...")   # None when unreadable
    """

    def __init__(self, adapter, clock=time.time):
        self.adapter = adapter
        self.clock = clock
        self._entries: Dict[str, ContractMetadata] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._lock = threading.Lock()
        # Bumped by clear(); reads started before a clear are not stored
        self._generation = 0

        self.hits = 0
        self.misses = 0
        self.failures = 0

    def get(self, address: str) -> Optional[ContractMetadata]:
        with self._lock:
            return self._entries.get(address.lower())

    def __contains__(self, address: str) -> bool:
        return self.get(address) is not None

    async def resolve(self, address: str) -> Optional[ContractMetadata]:
        """
        Name and symbol for `address`, reading the contract on a miss.

        Returns:
            ContractMetadata, or None if either read failed
        """
        key = address.lower()
        with self._lock:
            cached = self._entries.get(key)
            if cached:
                self.hits += 1
                return cached
            self.misses += 1
            pending = self._in_flight.get(key)
            generation = self._generation

        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        with self._lock:
            self._in_flight[key] = future
        try:
            result = await self._read(address, generation)
            future.set_result(result)
            return result
        except BaseException as e:
            future.set_exception(e)
            # nobody else may be awaiting it
            future.exception()
            raise
        finally:
            with self._lock:
                if self._in_flight.get(key) is future:
                    del self._in_flight[key]

    async def _read(self, address: str, generation: int) -> Optional[ContractMetadata]:
        key = address.lower()
        name_result, symbol_result = await asyncio.gather(
            self.adapter.read_token_field_async(address, 'name'),
            self.adapter.read_token_field_async(address, 'symbol'),
            return_exceptions=True,
        )

        for field, result in (('name', name_result), ('symbol', symbol_result)):
            if isinstance(result, ContractReadError):
                self.failures += 1
                log_failure(logger, FailureKind.PERMANENT, "blockchain", key,
                            f"Failed to fetch {field} for token", details=result.reason)
                return None
            if isinstance(result, BaseException):
                raise result

        metadata = ContractMetadata(name=name_result, symbol=symbol_result, resolved_at=self.clock())
        with self._lock:
            if generation == self._generation:
                self._entries[key] = metadata
        return metadata

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._in_flight.clear()
            self._generation += 1
            self.hits = 0
            self.misses = 0
            self.failures = 0

    def to_dict(self) -> Dict[str, Dict]:
        with self._lock:
            return {
                addr: {'name': m.name, 'symbol': m.symbol, 'timestamp': m.resolved_at}
                for addr, m in self._entries.items()
            }

    def load(self, data: Dict[str, Dict]):
        with self._lock:
            for addr, item in (data or {}).items():
                try:
                    self._entries[addr.lower()] = ContractMetadata(
                        name=item['name'], symbol=item['symbol'], resolved_at=float(item.get('timestamp', 0)))
                except (KeyError, TypeError, ValueError):
                    logger.warning(f"Skipping unreadable cached contract entry {addr}")

    def get_stats(self) -> Dict:
        with self._lock:
            total = self.hits + self.misses
            return {
                'size': len(self._entries),
                'hits': self.hits,
                'misses': self.misses,
                'failures': self.failures,
                'hit_rate_pct': (self.hits / total * 100) if total else 0,
            }
