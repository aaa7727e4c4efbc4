"""
Tracker Logging

Console logging for the discovery pipeline plus an in-memory buffer of
recent pipeline events that a presentation layer can read.

Log calls carry their context as extras:
    logger.info("Fetched pair data", extra={"stage": "api", "status": "success", "address": addr})
"""
import time
import logging
import threading
from collections import deque
from typing import Dict, List, Optional

from colorama import init, Fore, Style

init(autoreset=True)

STAGES = ("blockchain", "api", "system")
STATUSES = ("success", "error", "pending")

LEVEL_COLORS = {
    logging.DEBUG: Fore.CYAN,
    logging.INFO: Fore.GREEN,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.MAGENTA,
}


class ColorFormatter(logging.Formatter):
    """Level-coloured prefix, stage tag when present."""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, Fore.WHITE)
        stage = getattr(record, "stage", None)
        prefix = f"{color}[{record.levelname}]{Style.RESET_ALL}"
        if stage:
            prefix += f" {Fore.MAGENTA}[{stage.upper()}]{Style.RESET_ALL}"
        return f"{prefix} {super().format(record)}"


class PipelineLogBuffer(logging.Handler):
    """
    Keeps the most recent pipeline log entries in memory.

    Entries are plain dicts so they can be handed to any consumer:
    {timestamp, stage, status, level, message, address, details}
    """

    def __init__(self, max_entries: int = 1000):
        super().__init__()
        self._entries = deque(maxlen=max_entries)
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        try:
            status = getattr(record, "status", None)
            if status not in STATUSES:
                status = "error" if record.levelno >= logging.WARNING else "success"
            stage = getattr(record, "stage", None)
            if stage not in STAGES:
                stage = "system"

            entry = {
                "timestamp": record.created,
                "stage": stage,
                "status": status,
                "level": record.levelname,
                "message": record.getMessage(),
                "address": getattr(record, "address", None),
                "details": getattr(record, "details", None),
            }
            with self._entries_lock:
                # newest first
                self._entries.appendleft(entry)
        except Exception:
            self.handleError(record)

    def recent(self, limit: Optional[int] = None, stage: Optional[str] = None) -> List[Dict]:
        with self._entries_lock:
            entries = list(self._entries)
        if stage:
            entries = [e for e in entries if e["stage"] == stage]
        return entries[:limit] if limit else entries

    def clear(self):
        with self._entries_lock:
            self._entries.clear()


class RpcLogDebounceFilter(logging.Filter):
    """Drops identical records repeated within `window_seconds`."""

    def __init__(self, window_seconds: float = 1.0, clock=time.monotonic):
        super().__init__()
        self.window_seconds = window_seconds
        self.clock = clock
        self._recent: Dict[tuple, float] = {}
        self._lock = threading.Lock()

    def filter(self, record: logging.LogRecord) -> bool:
        key = (record.name, record.levelno, record.getMessage())
        now = self.clock()
        with self._lock:
            last = self._recent.get(key)
            if last is not None and now - last < self.window_seconds:
                return False
            self._recent[key] = now

            expired = [k for k, ts in self._recent.items() if now - ts > self.window_seconds]
            for k in expired:
                del self._recent[k]
        return True


pipeline_buffer = PipelineLogBuffer()


def setup_logging(level: str = "INFO") -> PipelineLogBuffer:
    """Install the console handler and the shared pipeline buffer on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in list(root.handlers):
        if isinstance(handler, PipelineLogBuffer) or getattr(handler, "_tracker_console", False):
            root.removeHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(ColorFormatter("%(asctime)s %(name)s: %(message)s", "%H:%M:%S"))
    console.addFilter(RpcLogDebounceFilter())
    console._tracker_console = True

    root.addHandler(console)
    root.addHandler(pipeline_buffer)

    # web3 and aiohttp are chatty at DEBUG
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    return pipeline_buffer
