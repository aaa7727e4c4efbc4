"""
Symbol exclusion rule for mint candidates.

Wrapped assets, stables and LP shares mint constantly and are never
"new tokens". LP shares are recognised by the "A/B" naming convention.
"""
from typing import Iterable, Optional

from config import FILTERED_SYMBOLS


def should_filter_symbol(symbol: str, deny_list: Optional[Iterable[str]] = None) -> bool:
    """True when the symbol is deny-listed or looks like a pool share."""
    deny = FILTERED_SYMBOLS if deny_list is None else deny_list
    if symbol in deny:
        return True
    if '/' in symbol:
        return True
    return False
