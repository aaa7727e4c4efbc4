"""
Failure taxonomy for the discovery pipeline.

TRANSIENT  - RPC/API unreachable or non-2xx. Feeds the scheduler's no-movement counter.
MALFORMED  - data missing or not yet available (no pairs, bad payload). Retried next window.
PERMANENT  - candidate rejected for this discovery pass (deny-listed symbol, unreadable contract).
"""
import logging
from enum import Enum
from typing import Optional


class FailureKind(Enum):
    TRANSIENT = "TRANSIENT"
    MALFORMED = "MALFORMED"
    PERMANENT = "PERMANENT"


class ContractReadError(Exception):
    """A name()/symbol() call on a token contract failed."""

    def __init__(self, address: str, field: str, reason: str = ""):
        self.address = address
        self.field = field
        self.reason = reason
        super().__init__(f"{field}() failed for {address}: {reason}")


def log_failure(logger: logging.Logger, kind: FailureKind, stage: str,
                address: Optional[str], message: str, details: Optional[str] = None):
    """Record a per-token failure with enough context to audit the decision later."""
    level = logging.WARNING if kind is FailureKind.TRANSIENT else logging.INFO
    logger.log(
        level,
        f"{kind.value} {message} ({address or '-'})",
        extra={
            "stage": stage,
            "status": "error",
            "address": address,
            "details": details,
            "failure_kind": kind.value,
        },
    )
