"""
DEXSCREENER API CLIENT

Market data for a single token: GET {base_url}/tokens/{address}

Only the first (primary) pair is used:
- pairCreatedAt (epoch ms)
- priceChange.m5 / priceChange.h1
- marketCap

No retries here. A failed or empty fetch is recorded with the scheduler as
a no-pair, no-movement check; the next eligible window is the retry.
"""

import time
import asyncio
import logging
import aiohttp
from enum import Enum
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from config import DEXSCREENER_API_URL, TOKEN_LOGO_URL, TOKEN_BANNER_URL
from errors import FailureKind, log_failure

logger = logging.getLogger(__name__)


class FetchStatus(Enum):
    OK = "OK"
    NO_PAIRS = "NO_PAIRS"
    HTTP_ERROR = "HTTP_ERROR"
    MALFORMED = "MALFORMED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


FAILURE_KINDS = {
    FetchStatus.NO_PAIRS: FailureKind.MALFORMED,
    FetchStatus.MALFORMED: FailureKind.MALFORMED,
    FetchStatus.HTTP_ERROR: FailureKind.TRANSIENT,
    FetchStatus.TRANSPORT_ERROR: FailureKind.TRANSIENT,
}


@dataclass
class MarketSnapshot:
    pair_created_at: Optional[float]
    price_change_m5: Optional[float]
    price_change_h1: Optional[float]
    market_cap: Optional[float]
    logo_uri: str
    fetched_at: float

    @property
    def has_movement(self) -> bool:
        return any(abs(v) > 0 for v in (self.price_change_m5, self.price_change_h1) if v is not None)


@dataclass
class FetchResult:
    status: FetchStatus
    snapshot: Optional[MarketSnapshot] = None
    http_status: Optional[int] = None
    error: Optional[str] = None

    @property
    def has_pair(self) -> bool:
        return self.status is FetchStatus.OK

    @property
    def failure_kind(self) -> Optional[FailureKind]:
        return FAILURE_KINDS.get(self.status)


def get_token_logo(address: str) -> str:
    return TOKEN_LOGO_URL.format(address=address)


def get_token_banner(address: str) -> str:
    return TOKEN_BANNER_URL.format(address=address)


def _safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_token_payload(address: str, payload: Any, now: Optional[float] = None) -> FetchResult:
    """
    Normalize a /tokens/{address} response.

    Absent or empty `pairs` is a valid "no data yet" answer.
    """
    now = time.time() if now is None else now

    if not isinstance(payload, dict):
        return FetchResult(FetchStatus.MALFORMED, error="response is not an object")

    pairs = payload.get('pairs')
    if pairs is None or pairs == []:
        return FetchResult(FetchStatus.NO_PAIRS)
    if not isinstance(pairs, list) or not isinstance(pairs[0], dict):
        return FetchResult(FetchStatus.MALFORMED, error="pairs is not a list of objects")

    primary = pairs[0]
    price_change = primary.get('priceChange') or {}
    if not isinstance(price_change, dict):
        price_change = {}

    created_ms = _safe_float(primary.get('pairCreatedAt'))

    snapshot = MarketSnapshot(
        pair_created_at=created_ms / 1000 if created_ms is not None else None,
        price_change_m5=_safe_float(price_change.get('m5')),
        price_change_h1=_safe_float(price_change.get('h1')),
        market_cap=_safe_float(primary.get('marketCap')),
        logo_uri=get_token_logo(address),
        fetched_at=now,
    )
    return FetchResult(FetchStatus.OK, snapshot=snapshot)


class DexScreenerAPI:
    """
    DexScreener token endpoint client (FREE, no API key required).

    Usage:
        api = DexScreenerAPI(config, scheduler=scheduler)
        snapshot = await api.fetch("0xabc...")   # None = no data
        await api.close()
    """

    def __init__(self, config: Dict = None, scheduler=None, clock=time.time):
        self.config = config or {}
        self.scheduler = scheduler
        self.clock = clock

        self.base_url = self.config.get('base_url', DEXSCREENER_API_URL).rstrip('/')
        self.timeout_seconds = self.config.get('timeout_seconds', 10)
        self.min_request_interval = self.config.get('min_request_interval_seconds', 0.2)

        self.session = None
        self._rate_lock = asyncio.Lock()
        self.last_request_time = None
        self.request_count = 0

        self.stats = {status.value: 0 for status in FetchStatus}

    async def _ensure_session(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds))

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _respect_rate_limit(self):
        async with self._rate_lock:
            if self.last_request_time is not None:
                elapsed = time.monotonic() - self.last_request_time
                if elapsed < self.min_request_interval:
                    await asyncio.sleep(self.min_request_interval - elapsed)
            self.last_request_time = time.monotonic()
            self.request_count += 1

    async def _request_json(self, url: str) -> Tuple[int, Any]:
        """
        GET `url`.

        Returns:
            (http_status, parsed JSON or None)
        """
        await self._ensure_session()
        async with self.session.get(url) as response:
            if response.status != 200:
                return response.status, None
            return response.status, await response.json(content_type=None)

    async def fetch_token(self, address: str) -> FetchResult:
        """Fetch, classify and record one market-data check."""
        url = f"{self.base_url}/tokens/{address}"
        generation = self.scheduler.generation if self.scheduler is not None else None
        logger.debug(f"Fetching token data for {address}",
                     extra={"stage": "api", "status": "pending", "address": address.lower()})

        try:
            await self._respect_rate_limit()
            http_status, payload = await self._request_json(url)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            result = FetchResult(FetchStatus.TRANSPORT_ERROR, error=str(e) or type(e).__name__)
        except ValueError as e:
            # body was not JSON
            result = FetchResult(FetchStatus.MALFORMED, error=str(e))
        else:
            if http_status != 200:
                result = FetchResult(FetchStatus.HTTP_ERROR, http_status=http_status,
                                     error=f"Status: {http_status}")
            else:
                result = parse_token_payload(address, payload, now=self.clock())
                result.http_status = http_status

        self._record(address, result, generation)
        return result

    async def fetch(self, address: str) -> Optional[MarketSnapshot]:
        """Market snapshot for `address`, or None when there is no data."""
        result = await self.fetch_token(address)
        return result.snapshot

    def _record(self, address: str, result: FetchResult, generation: Optional[int] = None):
        self.stats[result.status.value] += 1

        has_movement = result.snapshot.has_movement if result.snapshot else False
        if self.scheduler is not None:
            self.scheduler.record_check(address, has_pair=result.has_pair, has_movement=has_movement,
                                        generation=generation)

        if result.status is FetchStatus.OK:
            logger.debug(f"Successfully fetched data for {address}",
                         extra={"stage": "api", "status": "success", "address": address.lower()})
        elif result.status is FetchStatus.NO_PAIRS:
            log_failure(logger, result.failure_kind, "api", address.lower(), "No pairs found")
        else:
            log_failure(logger, result.failure_kind, "api", address.lower(),
                        "DexScreener API error", details=result.error)

    def get_stats(self) -> Dict:
        return {
            **self.stats,
            'total_requests': self.request_count,
        }
