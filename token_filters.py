"""
TOKEN FILTERS

Stateless filter/rank step between the registry and the presentation layer.

Every flag is independent and they combine with AND:
- hide_community_voted   drop community-voted tokens
- hide_no_market_cap     drop tokens without a market cap figure
- hide_inactive_pairs    drop tokens whose 1h price change is 0 or unknown
- hide_older_than_24h    drop tokens older than 24h (pair creation, else discovery)
- hide_unverified        drop tokens with no security classification

Output is newest-discovered first; ties keep registry order.
"""

import time
from dataclasses import dataclass, fields
from typing import Dict, List, Mapping, Optional

from registry import Token

MAX_TOKEN_AGE_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class FilterFlags:
    hide_community_voted: bool = False
    hide_no_market_cap: bool = False
    hide_inactive_pairs: bool = False
    hide_older_than_24h: bool = False
    hide_unverified: bool = False

    @classmethod
    def from_config(cls, config: Dict = None) -> "FilterFlags":
        config = config or {}
        return cls(**{f.name: bool(config[f.name]) for f in fields(cls) if f.name in config})


def _is_community_voted(token: Token, status) -> bool:
    if status is not None and status.is_community_voted:
        return True
    return token.is_manually_tracked


def passes_filters(token: Token, flags: FilterFlags, status=None, now: Optional[float] = None) -> bool:
    now = time.time() if now is None else now

    if flags.hide_community_voted and _is_community_voted(token, status):
        return False

    if flags.hide_no_market_cap and not token.market_cap:
        return False

    if flags.hide_inactive_pairs and not token.price_change_h1:
        return False

    if flags.hide_older_than_24h and token.age_seconds(now) > MAX_TOKEN_AGE_SECONDS:
        return False

    if flags.hide_unverified and status is None:
        return False

    return True


def apply_filters(tokens: List[Token], flags: FilterFlags,
                  statuses: Optional[Mapping[str, object]] = None,
                  now: Optional[float] = None) -> List[Token]:
    """
    Filter and rank tokens.

    Args:
        tokens: Registry snapshot
        flags: Active filter flags
        statuses: Security status per lower-cased address (missing = unverified)
        now: Reference time for the age filter

    Returns:
        Tokens that pass every enabled filter, most recently discovered first
    """
    statuses = statuses or {}
    now = time.time() if now is None else now

    visible = [t for t in tokens if passes_filters(t, flags, statuses.get(t.key), now)]
    # sorted() is stable, so equal first_seen keeps registry order
    return sorted(visible, key=lambda t: t.first_seen, reverse=True)
