"""
Token-deployment platform verification.

Boolean oracle: does the platform know this token?

relay mode   GET {relay_url}?address=0x...        -> {"exists": bool}
direct mode  GET {platform_url}clanker/0x...      -> page; missing tokens say "Token Not Found"
"""
import logging
import asyncio
import aiohttp
from typing import Dict

from errors import FailureKind, log_failure

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36'
)
NOT_FOUND_MARKER = 'Token Not Found'


class PlatformVerifier:
    """Any failure to get an answer counts as "not found"."""

    def __init__(self, config: Dict = None):
        self.config = config or {}
        platform = self.config.get('platform', {})
        self.platform_name = platform.get('name', 'CLANKER')
        self.platform_url = platform.get('url', 'https://www.clanker.world/')
        self.relay_url = self.config.get('relay_url') or ''
        self.timeout_seconds = self.config.get('timeout_seconds', 10)
        self.session = None

        self.stats = {
            'requests': 0,
            'verified': 0,
            'not_found': 0,
            'errors': 0,
        }

    async def _ensure_session(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds))

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def exists(self, address: str) -> bool:
        self.stats['requests'] += 1
        try:
            await self._ensure_session()
            if self.relay_url:
                found = await self._check_relay(address)
            else:
                found = await self._check_platform_page(address)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.stats['errors'] += 1
            log_failure(logger, FailureKind.TRANSIENT, "api", address.lower(),
                        f"Error checking {self.platform_name} token", details=str(e) or type(e).__name__)
            return False

        self.stats['verified' if found else 'not_found'] += 1
        logger.info(f"[{self.platform_name}] Token {address} verification result: "
                    f"{'verified' if found else 'not found'}",
                    extra={"stage": "api", "status": "success", "address": address.lower()})
        return found

    async def _check_relay(self, address: str) -> bool:
        async with self.session.get(self.relay_url, params={'address': address}) as response:
            if response.status != 200:
                raise aiohttp.ClientResponseError(
                    response.request_info, response.history, status=response.status,
                    message='Failed to verify token')
            data = await response.json(content_type=None)
        return bool(data.get('exists')) if isinstance(data, dict) else False

    async def _check_platform_page(self, address: str) -> bool:
        url = f"{self.platform_url.rstrip('/')}/clanker/{address}"
        async with self.session.get(url, headers={'User-Agent': BROWSER_USER_AGENT}) as response:
            if response.status != 200:
                raise aiohttp.ClientResponseError(
                    response.request_info, response.history, status=response.status,
                    message=f"API error: {response.status}")
            text = await response.text()
        return NOT_FOUND_MARKER not in text
