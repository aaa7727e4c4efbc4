"""
On-chain discovery of newly minted tokens.
"""
from .contract_metadata import ContractMetadata, ContractMetadataCache
from .mint_watcher import MintWatcher
from .symbol_filter import should_filter_symbol

__all__ = [
    'ContractMetadata',
    'ContractMetadataCache',
    'MintWatcher',
    'should_filter_symbol',
]
