"""
EVM chain adapter: mint-transfer logs and ERC20 metadata reads over web3
"""
import time
import logging
import requests
from web3 import Web3
from functools import wraps
from typing import List, Dict

from config import BASE_RPC_URL, TRANSFER_EVENT_TOPIC, ZERO_ADDRESS
from errors import ContractReadError
from .base_adapter import ChainAdapter

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {"constant": True, "inputs": [], "name": "name", "outputs": [{"name": "", "type": "string"}], "type": "function"},
    {"constant": True, "inputs": [], "name": "symbol", "outputs": [{"name": "", "type": "string"}], "type": "function"},
]

READABLE_FIELDS = ("name", "symbol")

# Indexed `from` topic for the zero address
ZERO_ADDRESS_TOPIC = "0x" + ZERO_ADDRESS[2:].rjust(64, "0")


def retry_with_backoff(max_retries=3, base_delay=1):
    """Retry a blocking RPC read with exponential backoff on network errors"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except (ConnectionError, requests.exceptions.ConnectionError,
                        requests.exceptions.Timeout, OSError) as e:
                    if attempt == max_retries - 1:
                        logger.warning(f"Max retries reached for {func.__name__}: {e}",
                                       extra={"stage": "blockchain", "status": "error"})
                        raise
                    delay = base_delay * (2 ** attempt)
                    logger.warning(f"Network error in {func.__name__}, retrying in {delay}s...",
                                   extra={"stage": "blockchain", "status": "pending"})
                    time.sleep(delay)
        return wrapper
    return decorator


class EVMAdapter(ChainAdapter):
    """EVM adapter (Base by default)"""

    def __init__(self, config: dict = None):
        super().__init__(config)
        self.chain_name = self.config.get('chain_name', 'BASE')
        self.rpc_url = self.config.get('rpc_url', BASE_RPC_URL)
        self.request_timeout = self.config.get('request_timeout', 20)
        self.w3 = None

        # Block timestamps never change; keep them for the lifetime of the adapter
        self._block_timestamps: Dict[int, int] = {}
        self._max_cached_blocks = self.config.get('max_cached_blocks', 5000)

        self.stats = {
            'log_queries': 0,
            'logs_returned': 0,
            'block_reads': 0,
            'contract_reads': 0,
            'contract_read_failures': 0,
        }

    def connect(self) -> bool:
        """Connect to the chain via RPC"""
        try:
            self.w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={'timeout': self.request_timeout}))

            if not self.w3.is_connected():
                logger.error(f"{self.get_chain_prefix()} Could not connect to RPC {self.rpc_url}",
                             extra={"stage": "blockchain", "status": "error"})
                return False

            block = self.w3.eth.block_number
            logger.info(f"{self.get_chain_prefix()} Connected! Block: {block}",
                        extra={"stage": "blockchain", "status": "success"})
            return True
        except Exception as e:
            logger.error(f"{self.get_chain_prefix()} Connection error: {e}",
                         extra={"stage": "blockchain", "status": "error"})
            return False

    def _require_connection(self):
        if self.w3 is None and not self.connect():
            raise ConnectionError(f"{self.get_chain_prefix()} RPC unavailable")

    @retry_with_backoff(max_retries=3, base_delay=2)
    def get_latest_block(self) -> int:
        self._require_connection()
        return self.w3.eth.block_number

    @retry_with_backoff(max_retries=3, base_delay=1)
    def get_mint_logs(self, from_block: int, to_block: int) -> List[Dict]:
        self._require_connection()
        raw_logs = self.w3.eth.get_logs({
            'fromBlock': from_block,
            'toBlock': to_block,
            'topics': [TRANSFER_EVENT_TOPIC, ZERO_ADDRESS_TOPIC],
        })
        self.stats['log_queries'] += 1
        self.stats['logs_returned'] += len(raw_logs)

        return [
            {
                'address': log['address'],
                'block_number': int(log['blockNumber']),
            }
            for log in raw_logs
        ]

    @retry_with_backoff(max_retries=3, base_delay=1)
    def get_block_timestamp(self, block_number: int) -> int:
        if block_number in self._block_timestamps:
            return self._block_timestamps[block_number]

        self._require_connection()
        block = self.w3.eth.get_block(block_number)
        self.stats['block_reads'] += 1
        timestamp = int(block['timestamp'])

        if len(self._block_timestamps) >= self._max_cached_blocks:
            # drop the oldest half
            for stale in sorted(self._block_timestamps)[: self._max_cached_blocks // 2]:
                del self._block_timestamps[stale]
        self._block_timestamps[block_number] = timestamp
        return timestamp

    def read_token_field(self, token_address: str, field: str) -> str:
        if field not in READABLE_FIELDS:
            raise ValueError(f"Unsupported token field: {field}")

        self.stats['contract_reads'] += 1
        try:
            self._require_connection()
            contract = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
            value = getattr(contract.functions, field)().call()
        except Exception as e:
            self.stats['contract_read_failures'] += 1
            raise ContractReadError(token_address, field, str(e)) from e

        if not isinstance(value, str) or not value:
            self.stats['contract_read_failures'] += 1
            raise ContractReadError(token_address, field, "empty result")
        return value

    def get_stats(self) -> Dict:
        return {**self.stats, 'cached_block_timestamps': len(self._block_timestamps)}
