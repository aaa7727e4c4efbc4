"""
OFF-CHAIN MARKET DATA

Market data for tracked tokens, fetched only when a token is due:

  TokenRegistry (tracked tokens)
          ↓
  MarketCheckScheduler (is this token due?)
          ↓
  DexScreenerAPI (one request per due token, bounded concurrency)
          ↓
  TokenRegistry.update (merge enrichment fields)
"""

from .dex_screener import (
    DexScreenerAPI,
    FetchResult,
    FetchStatus,
    MarketSnapshot,
    get_token_banner,
    get_token_logo,
    parse_token_payload,
)
from .market_scheduler import MarketCheckScheduler, MarketCheckState
from .refresher import MarketRefresher

__all__ = [
    'DexScreenerAPI',
    'FetchResult',
    'FetchStatus',
    'MarketSnapshot',
    'get_token_banner',
    'get_token_logo',
    'parse_token_payload',
    'MarketCheckScheduler',
    'MarketCheckState',
    'MarketRefresher',
]
