"""
Chain adapter base interface for mint discovery
"""
import asyncio
from abc import ABC, abstractmethod
from typing import List, Dict


class ChainAdapter(ABC):
    """Base interface for blockchain access used by the mint watcher"""

    def __init__(self, config: dict = None):
        self.config = config or {}
        self.chain_name = ""

    @abstractmethod
    def connect(self) -> bool:
        """Connect to the blockchain and verify connectivity"""
        pass

    @abstractmethod
    def get_latest_block(self) -> int:
        """Latest block number"""
        pass

    @abstractmethod
    def get_mint_logs(self, from_block: int, to_block: int) -> List[Dict]:
        """
        Transfer logs whose sender is the zero address, inclusive range.
        Returns list of dicts with: address, block_number
        """
        pass

    @abstractmethod
    def get_block_timestamp(self, block_number: int) -> int:
        """Block time in epoch seconds"""
        pass

    @abstractmethod
    def read_token_field(self, token_address: str, field: str) -> str:
        """
        Call name() or symbol() on a token contract.
        Raises ContractReadError when the call fails or returns nothing.
        """
        pass

    # Async wrappers: blocking calls run in a worker thread so the event
    # loop keeps serving other tokens.

    async def get_latest_block_async(self) -> int:
        return await asyncio.to_thread(self.get_latest_block)

    async def get_mint_logs_async(self, from_block: int, to_block: int) -> List[Dict]:
        return await asyncio.to_thread(self.get_mint_logs, from_block, to_block)

    async def get_block_timestamp_async(self, block_number: int) -> int:
        return await asyncio.to_thread(self.get_block_timestamp, block_number)

    async def read_token_field_async(self, token_address: str, field: str) -> str:
        return await asyncio.to_thread(self.read_token_field, token_address, field)

    def get_chain_prefix(self) -> str:
        return f"[{self.chain_name}]" if self.chain_name else "[EVM]"
