import os
import copy
import yaml
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_RPC_URL = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
DEXSCREENER_API_URL = os.getenv("DEXSCREENER_API_URL", "https://api.dexscreener.com/latest/dex")

# Relay that answers {"exists": bool}. Empty = check the platform page directly.
VERIFY_RELAY_URL = os.getenv("VERIFY_RELAY_URL", "")

TRACKER_STATE_PATH = os.getenv("TRACKER_STATE_PATH", "data/tracker_state.json")
TRACKER_LOG_LEVEL = os.getenv("TRACKER_LOG_LEVEL", "INFO")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# keccak("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# Wrapped, stable and LP-share symbols minted constantly on Base
FILTERED_SYMBOLS = [
    'BSWAP-LP',
    'STKD-UNI-V2',
    'cbETH',
    'USD+',
    'DAI',
    'sUSDe',
    'USDe',
    'UNI-V2',
    'oUSDT',
    'WETH',
    'USDC',
    'cbBTC',
    'USDbC',
    'EURC',
    'tBTC',
    'aBasWETH',
    'axlUSDC',
    'flETH',
    'mwETH',
    'WBTC',
    'rsETH',
]

# Editorially curated list
TRUSTED_TOKENS = [
    '0x712f43b21cf3e1b189c27678c0f551c08c01d150',
    '0xacfe6019ed1a7dc6f7b508c02d1b04ec88cc21bf',
    '0xfa980ced6895ac314e7de34ef1bfae90a5add21b',
    '0x1dd2d631c92b1acdfcdd51a0f7145a50130050c4',
]

# Community nominated list, also tracked as a watch-list
POPULAR_VOTE_TOKENS = []

TOKEN_LOGO_URL = "https://dd.dexscreener.com/ds-data/tokens/base/{address}.png"
TOKEN_BANNER_URL = "https://dd.dexscreener.com/ds-data/tokens/base/{address}/header.png"

TRACKER_CONFIG = {
    "chain": {
        "rpc_url": BASE_RPC_URL,
        "request_timeout": 20,
    },
    "watcher": {
        "lookback_blocks": 1000,
        "stale_after_seconds": 2 * 60 * 60,
        "poll_interval_seconds": 4.0,
        "max_block_range": 100,
    },
    "scheduler": {
        "new_token_window_seconds": 120,
        "new_token_interval_seconds": 5,
        "active_interval_seconds": 15,
        "inactive_interval_seconds": 30,
        "max_checks_without_movement": 3,
    },
    "refresher": {
        "interval_seconds": 5,
        "watchlist_interval_seconds": 30,
        "max_concurrency": 5,
    },
    "dexscreener": {
        "base_url": DEXSCREENER_API_URL,
        "timeout_seconds": 10,
        "min_request_interval_seconds": 0.2,
    },
    "security": {
        "platform": {
            "name": "CLANKER",
            "url": "https://www.clanker.world/",
        },
        "relay_url": VERIFY_RELAY_URL,
        "timeout_seconds": 10,
        "trusted_tokens": TRUSTED_TOKENS,
        "community_tokens": POPULAR_VOTE_TOKENS,
    },
    "filters": {
        "hide_community_voted": False,
        "hide_no_market_cap": False,
        "hide_inactive_pairs": True,
        "hide_older_than_24h": False,
        "hide_unverified": False,
    },
    "symbols": {
        "deny_list": FILTERED_SYMBOLS,
    },
    "persistence": {
        "path": TRACKER_STATE_PATH,
        "namespace": "baseTokens",
        "flush_interval_seconds": 5,
    },
}

TRACKER_CONFIG_PATH = Path(os.getenv("TRACKER_CONFIG_PATH", Path(__file__).parent / "tracker.yaml"))


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_tracker_config(path=None) -> dict:
    """Load tracker.yaml on top of the built-in defaults."""
    config_path = Path(path) if path else TRACKER_CONFIG_PATH
    if config_path.exists():
        with open(config_path, 'r') as f:
            return _deep_merge(TRACKER_CONFIG, yaml.safe_load(f) or {})
    return copy.deepcopy(TRACKER_CONFIG)
