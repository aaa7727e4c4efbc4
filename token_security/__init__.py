"""
Trust and verification tags for tracked tokens.
"""
from .classifier import SecurityClassifier, SecurityStatus
from .verifier import PlatformVerifier

__all__ = [
    'SecurityClassifier',
    'SecurityStatus',
    'PlatformVerifier',
]
