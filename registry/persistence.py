"""
Tracker State Store

Persists the tracker state to a single JSON file, one key per namespace:
    baseTokens              - token registry
    token-contract-storage  - contract metadata cache
    dexscreener-storage     - market check states

Survives restarts; removed by an explicit refresh.
"""
import os
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List

from .models import Token

logger = logging.getLogger(__name__)

TOKENS_NAMESPACE = "baseTokens"
CONTRACTS_NAMESPACE = "token-contract-storage"
MARKET_CHECKS_NAMESPACE = "dexscreener-storage"


def serialize_tokens(tokens: List[Token]) -> List[Dict]:
    return [token.to_dict() for token in tokens]


def deserialize_tokens(raw: List[Dict]) -> List[Token]:
    tokens = []
    for item in raw or []:
        try:
            tokens.append(Token.from_dict(item))
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable cached token {item.get('address') if isinstance(item, dict) else item}: {e}")
    return tokens


class TrackerStateStore:
    """JSON file store with atomic replace on write."""

    def __init__(self, path: str, tokens_namespace: str = TOKENS_NAMESPACE):
        self.path = Path(path)
        self.tokens_namespace = tokens_namespace
        self._lock = threading.Lock()

    def load(self) -> Dict[str, Any]:
        with self._lock:
            if not self.path.exists():
                return {}
            try:
                with open(self.path, 'r') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Error loading cached state from {self.path}: {e}")
                return {}
        return data if isinstance(data, dict) else {}

    def load_tokens(self) -> List[Token]:
        return deserialize_tokens(self.load().get(self.tokens_namespace, []))

    def save(self, state: Dict[str, Any]):
        """Write every namespace in `state`, keeping namespaces not mentioned."""
        with self._lock:
            current = {}
            if self.path.exists():
                try:
                    with open(self.path, 'r') as f:
                        current = json.load(f) or {}
                except (OSError, json.JSONDecodeError):
                    current = {}
            current.update(state)

            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, 'w') as f:
                json.dump(current, f)
            os.replace(tmp_path, self.path)

    def save_tokens(self, tokens: List[Token]):
        self.save({self.tokens_namespace: serialize_tokens(tokens)})

    def clear(self):
        with self._lock:
            if self.path.exists():
                self.path.unlink()
                logger.info(f"Cleared persisted state at {self.path}")
