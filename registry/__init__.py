"""
Token registry, token model and persisted state.
"""
from .models import Token
from .token_registry import TokenRegistry
from .persistence import (
    TrackerStateStore,
    TOKENS_NAMESPACE,
    CONTRACTS_NAMESPACE,
    MARKET_CHECKS_NAMESPACE,
)

__all__ = [
    'Token',
    'TokenRegistry',
    'TrackerStateStore',
    'TOKENS_NAMESPACE',
    'CONTRACTS_NAMESPACE',
    'MARKET_CHECKS_NAMESPACE',
]
