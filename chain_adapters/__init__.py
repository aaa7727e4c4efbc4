"""
Chain adapter factory and exports
"""
import logging

from .base_adapter import ChainAdapter
from .evm_adapter import EVMAdapter

logger = logging.getLogger(__name__)


def get_adapter_for_chain(chain_name: str, config: dict = None) -> ChainAdapter:
    """
    Factory function to get the adapter for a chain.

    Only Base is tracked; any other name returns None.
    """
    adapters = {
        'base': EVMAdapter,
    }

    adapter_class = adapters.get(chain_name.lower())
    if adapter_class:
        return adapter_class({'chain_name': chain_name.upper(), **(config or {})})

    logger.error(f"Unknown chain: {chain_name}")
    return None


__all__ = [
    'ChainAdapter',
    'EVMAdapter',
    'get_adapter_for_chain',
]
