"""Utility modules for the token vault."""

from .circuit_breaker import CircuitBreaker, CircuitSnapshot
from .encryption_utils import EncryptionKeySet, SecretCipher
from .keyed_lock import KeyedLock
from .logger import (
    ContextAwareLogger,
    SecretRedactionFilter,
    configure_logging,
    get_logger,
)
from .retry_utils import calculate_exponential_backoff, retry_with_backoff
from .security_utils import (
    generate_code_challenge,
    generate_code_verifier,
    generate_state_token,
    hash_state_token,
)

__all__ = [
    # Encryption
    "EncryptionKeySet",
    "SecretCipher",
    # Concurrency
    "CircuitBreaker",
    "CircuitSnapshot",
    "KeyedLock",
    # Logging
    "ContextAwareLogger",
    "SecretRedactionFilter",
    "configure_logging",
    "get_logger",
    # Retry
    "calculate_exponential_backoff",
    "retry_with_backoff",
    # Security helpers
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state_token",
    "hash_state_token",
]
