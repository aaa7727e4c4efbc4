"""
SECURITY CLASSIFIER

Trust tags for a token:
- community-voted: address on the community list
- curated-trusted: address on the curated list, or verified by the platform
- automated creation: the deployment platform knows the token

The platform check is the most rate-sensitive call we make. Its answer is
cached for the life of the process, negatives included, and concurrent
requests for one address share a single call. A token deployed through the
platform after a negative answer is not re-classified until restart or an
explicit invalidate().
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecurityStatus:
    is_automated_creation: bool
    platform_tag: Optional[str]
    is_curated_trusted: bool
    is_community_voted: bool
    platform_url: Optional[str] = None

    @property
    def is_trusted(self) -> bool:
        return self.is_curated_trusted or self.is_community_voted


class SecurityClassifier:
    """
    Usage:
        classifier = SecurityClassifier(verifier, config['security'])
        status = await classifier.classify("0xabc...")   # None = unverified
    """

    def __init__(self, verifier, config: Dict = None):
        self.verifier = verifier
        self.config = config or {}

        platform = self.config.get('platform', {})
        self.platform_name = platform.get('name', 'CLANKER')
        self.platform_url = platform.get('url', 'https://www.clanker.world/')

        self.trusted_tokens = {a.lower() for a in self.config.get('trusted_tokens', [])}
        self.community_tokens = {a.lower() for a in self.config.get('community_tokens', [])}

        self._verified: Dict[str, bool] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._lock = threading.Lock()
        # Bumped by clear(); answers to calls started before a clear are not cached
        self._generation = 0

        self.cache_hits = 0
        self.external_calls = 0

    def is_curated(self, address: str) -> bool:
        return address.lower() in self.trusted_tokens

    def is_community_voted(self, address: str) -> bool:
        return address.lower() in self.community_tokens

    async def is_platform_token(self, address: str) -> bool:
        """Platform verification with at most one external call per address."""
        key = address.lower()
        with self._lock:
            if key in self._verified:
                self.cache_hits += 1
                return self._verified[key]
            pending = self._in_flight.get(key)
            generation = self._generation

        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        with self._lock:
            self._in_flight[key] = future
            self.external_calls += 1
        try:
            found = await self.verifier.exists(key)
            with self._lock:
                if generation == self._generation:
                    self._verified[key] = found
            future.set_result(found)
            return found
        except BaseException as e:
            future.set_exception(e)
            future.exception()
            raise
        finally:
            with self._lock:
                if self._in_flight.get(key) is future:
                    del self._in_flight[key]

    async def classify(self, address: str) -> Optional[SecurityStatus]:
        key = address.lower()
        curated = self.is_curated(key)
        voted = self.is_community_voted(key)

        if await self.is_platform_token(key):
            return SecurityStatus(
                is_automated_creation=True,
                platform_tag=self.platform_name,
                is_curated_trusted=True,
                is_community_voted=voted,
                platform_url=f"{self.platform_url.rstrip('/')}/clanker/{key}",
            )

        if curated or voted:
            return SecurityStatus(
                is_automated_creation=False,
                platform_tag=None,
                is_curated_trusted=curated,
                is_community_voted=voted,
            )

        return None

    async def classify_many(self, addresses: Iterable[str]) -> Dict[str, Optional[SecurityStatus]]:
        """Classify in parallel; one failing address yields None for that address only."""
        keys = list(dict.fromkeys(a.lower() for a in addresses))
        results = await asyncio.gather(*(self.classify(k) for k in keys), return_exceptions=True)

        statuses = {}
        for key, result in zip(keys, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.error(f"Error getting token security status: {result}",
                             extra={"stage": "api", "status": "error", "address": key})
                statuses[key] = None
            else:
                statuses[key] = result
        return statuses

    def cached_verification(self, address: str) -> Optional[bool]:
        with self._lock:
            return self._verified.get(address.lower())

    def invalidate(self, address: str):
        """Forget the platform answer for one address (e.g. rediscovered under a new identity)."""
        with self._lock:
            self._verified.pop(address.lower(), None)

    def clear(self):
        with self._lock:
            self._verified.clear()
            self._in_flight.clear()
            self._generation += 1

    def get_stats(self) -> Dict:
        with self._lock:
            return {
                'cached': len(self._verified),
                'cache_hits': self.cache_hits,
                'external_calls': self.external_calls,
                'in_flight': len(self._in_flight),
            }
