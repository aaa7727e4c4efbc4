"""
MARKET CHECK SCHEDULER

Decides, per token, whether the market-data API should be queried now.
Keeps the external call rate proportional to tokens that are actually
moving:

- brand-new tokens (inside the new-token window): every 5s
- tokens with a pair or price movement: every 15s
- everything else: every 30s
- a new token with no movement after 3 checks drops to the 30s cadence
- nothing goes unchecked for longer than the inactive interval
"""
import time
import logging
import threading
from dataclasses import dataclass, asdict
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class MarketCheckState:
    last_checked_at: float
    first_observed_at: float
    has_active_pair: bool = False
    check_count: int = 0
    consecutive_checks_without_movement: int = 0
    last_movement_at: Optional[float] = None


class MarketCheckScheduler:
    """
    Per-address adaptive re-check policy.

    Usage:
        scheduler = MarketCheckScheduler(config)
        if scheduler.should_check(address):
            ...fetch...
            scheduler.record_check(address, has_pair=True, has_movement=False)
    """

    def __init__(self, config: Dict = None, clock=time.time):
        self.config = config or {}
        self.clock = clock

        self.new_token_window = self.config.get('new_token_window_seconds', 120)
        self.new_token_interval = self.config.get('new_token_interval_seconds', 5)
        self.active_interval = self.config.get('active_interval_seconds', 15)
        self.inactive_interval = self.config.get('inactive_interval_seconds', 30)
        self.max_checks_without_movement = self.config.get('max_checks_without_movement', 3)

        self._states: Dict[str, MarketCheckState] = {}
        self._lock = threading.Lock()
        # Bumped by clear(); checks started before a clear are discarded
        self._generation = 0

        self.stats = {
            'checks_recorded': 0,
            'checks_approved': 0,
            'checks_deferred': 0,
            'demotions': 0,
            'stale_checks_dropped': 0,
        }

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def should_check(self, address: str, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        with self._lock:
            state = self._states.get(address.lower())
            decision = self._decide(state, now)
            self.stats['checks_approved' if decision else 'checks_deferred'] += 1
            return decision

    def _decide(self, state: Optional[MarketCheckState], now: float) -> bool:
        # Never checked
        if state is None or state.check_count == 0:
            return True

        since_last_check = now - state.last_checked_at

        # Hard ceiling
        if since_last_check >= self.inactive_interval:
            return True

        if now - state.first_observed_at < self.new_token_window:
            if (state.last_movement_at is None
                    and state.consecutive_checks_without_movement >= self.max_checks_without_movement):
                return since_last_check >= self.inactive_interval
            return since_last_check >= self.new_token_interval

        if state.has_active_pair or state.last_movement_at is not None:
            return since_last_check >= self.active_interval

        return since_last_check >= self.inactive_interval

    def mark_new(self, address: str, now: Optional[float] = None):
        """Start the new-token window at discovery time, with no checks yet."""
        now = self.clock() if now is None else now
        key = address.lower()
        with self._lock:
            if key in self._states:
                return
            self._states[key] = MarketCheckState(last_checked_at=now, first_observed_at=now)

    def record_check(self, address: str, has_pair: bool, has_movement: bool = False,
                     now: Optional[float] = None,
                     generation: Optional[int] = None) -> Optional[MarketCheckState]:
        """
        Record an executed check and its outcome.

        Pass the `generation` read before the check started; a check that
        straddles a clear() is dropped and None is returned.
        """
        now = self.clock() if now is None else now
        key = address.lower()
        with self._lock:
            if generation is not None and generation != self._generation:
                self.stats['stale_checks_dropped'] += 1
                logger.debug(f"Dropping market check for {key} started before a reset",
                             extra={"stage": "api", "address": key})
                return None

            state = self._states.get(key)
            if state is None:
                state = MarketCheckState(last_checked_at=now, first_observed_at=now)
                self._states[key] = state

            was_demoted = self._is_demoted(state)

            state.last_checked_at = now
            state.has_active_pair = has_pair
            state.check_count += 1
            if has_movement:
                state.last_movement_at = now
                state.consecutive_checks_without_movement = 0
            else:
                state.consecutive_checks_without_movement += 1

            self.stats['checks_recorded'] += 1
            if not was_demoted and self._is_demoted(state) and now - state.first_observed_at < self.new_token_window:
                self.stats['demotions'] += 1
                logger.debug(f"No movement after {state.check_count} checks, slowing cadence for {key}",
                             extra={"stage": "api", "address": key})

            return MarketCheckState(**asdict(state))

    def _is_demoted(self, state: MarketCheckState) -> bool:
        return (state.last_movement_at is None
                and state.consecutive_checks_without_movement >= self.max_checks_without_movement)

    def get_state(self, address: str) -> Optional[MarketCheckState]:
        with self._lock:
            state = self._states.get(address.lower())
            return MarketCheckState(**asdict(state)) if state else None

    def clear(self):
        with self._lock:
            self._states.clear()
            self._generation += 1

    def to_dict(self) -> Dict[str, Dict]:
        with self._lock:
            return {addr: asdict(state) for addr, state in self._states.items()}

    def load(self, data: Dict[str, Dict]):
        with self._lock:
            for addr, item in (data or {}).items():
                try:
                    self._states[addr.lower()] = MarketCheckState(**item)
                except TypeError:
                    logger.warning(f"Skipping unreadable cached check state {addr}")

    def get_stats(self) -> Dict:
        with self._lock:
            return {**self.stats, 'tracked': len(self._states)}
