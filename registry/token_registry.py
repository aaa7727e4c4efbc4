"""
TOKEN REGISTRY

Authoritative set of tracked tokens, keyed by lower-cased address.

Rules:
- Discovery is first-writer-wins: a second creation event for a known
  address is ignored.
- Enrichment merges overwrite market fields but keep discovery fields
  (first_seen, origin_block, discovered_at) from the stored record.
- pair_created_at never reverts to None once set.
- reset() clears the registry and every attached cache under one lock.

All writes go through one lock, so concurrent writers to the same address
cannot lose updates.
"""
import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from .models import Token

logger = logging.getLogger(__name__)

Listener = Callable[[List[str]], None]


class TokenRegistry:
    """
    Thread-safe token registry with change notification.

    Usage:
        registry = TokenRegistry()
        unsubscribe = registry.subscribe(lambda changed: print(changed))
        registry.add_discovered(Token(address="0xabc..."))
        tokens = registry.snapshot()
    """

    def __init__(self, caches: Optional[list] = None):
        self._tokens: Dict[str, Token] = {}
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        # Anything with clear(); wiped together with the registry
        self._caches = list(caches or [])

        self.stats = {
            'discovered': 0,
            'duplicate_discoveries': 0,
            'merges': 0,
            'resets': 0,
        }

    def attach_cache(self, cache):
        """Register a cache that must be cleared whenever the registry resets."""
        with self._lock:
            if cache not in self._caches:
                self._caches.append(cache)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_discovered(self, token: Token) -> bool:
        """
        Insert a newly discovered token.

        Returns:
            True if inserted, False if the address was already tracked
        """
        key = token.key
        with self._lock:
            if key in self._tokens:
                self.stats['duplicate_discoveries'] += 1
                return False
            self._tokens[key] = replace(token)
            self.stats['discovered'] += 1

        logger.info(f"Tracking {token.symbol} ({token.address})",
                    extra={"stage": "blockchain", "status": "success", "address": key})
        self._notify([key])
        return True

    def merge(self, token: Token) -> Token:
        """
        Keyed upsert.

        Returns:
            The stored record after the merge
        """
        key = token.key
        with self._lock:
            existing = self._tokens.get(key)
            stored = self._merged(existing, token)
            changed = stored != existing
            self._tokens[key] = stored
            self.stats['merges'] += 1

        if changed:
            self._notify([key])
        return replace(stored)

    def update(self, address: str, **changes) -> Optional[Token]:
        """
        Apply field changes to a tracked token atomically.

        Returns:
            The stored record, or None if the address is not tracked
        """
        key = address.lower()
        with self._lock:
            existing = self._tokens.get(key)
            if existing is None:
                return None
            stored = self._merged(existing, replace(existing, **changes))
            changed = stored != existing
            self._tokens[key] = stored
            self.stats['merges'] += 1

        if changed:
            self._notify([key])
        return replace(stored)

    def load(self, tokens: List[Token]):
        """Restore persisted tokens without emitting per-token discovery logs."""
        with self._lock:
            for token in tokens:
                key = token.key
                self._tokens[key] = self._merged(self._tokens.get(key), token)
        logger.info(f"Restored {len(tokens)} cached tokens", extra={"stage": "system"})
        self._notify([t.key for t in tokens])

    def reset(self):
        """Clear every token and every attached cache."""
        with self._lock:
            self._tokens.clear()
            for cache in self._caches:
                cache.clear()
            self.stats['resets'] += 1

        logger.info("Registry and caches reset", extra={"stage": "system", "status": "success"})
        self._notify([])

    @staticmethod
    def _merged(existing: Optional[Token], incoming: Token) -> Token:
        if existing is None:
            return replace(incoming)

        return replace(
            incoming,
            address=existing.address,
            name=incoming.name or existing.name,
            symbol=incoming.symbol or existing.symbol,
            first_seen=existing.first_seen,
            origin_block=existing.origin_block,
            discovered_at=existing.discovered_at,
            pair_created_at=(incoming.pair_created_at
                             if incoming.pair_created_at is not None
                             else existing.pair_created_at),
            is_manually_tracked=existing.is_manually_tracked or incoming.is_manually_tracked,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, address: str) -> Optional[Token]:
        with self._lock:
            token = self._tokens.get(address.lower())
            return replace(token) if token else None

    def snapshot(self) -> List[Token]:
        """Copies of all tokens in insertion order."""
        with self._lock:
            return [replace(t) for t in self._tokens.values()]

    def addresses(self) -> List[str]:
        with self._lock:
            return list(self._tokens.keys())

    def __contains__(self, address: str) -> bool:
        with self._lock:
            return address.lower() in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener.

        The listener receives the changed addresses (empty list on reset).

        Returns:
            Callable that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, changed: List[str]):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(changed)
            except Exception as e:
                logger.error(f"Registry listener error: {e}", extra={"stage": "system", "status": "error"})

    def get_stats(self) -> Dict:
        with self._lock:
            return {**self.stats, 'size': len(self._tokens)}
