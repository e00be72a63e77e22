"""
Constants for the schema-drift backend.
Guido says: "Explicit is better than implicit."
"""

from typing import Tuple


# ============================================================================
# Connection Error Patterns
# ============================================================================
# Used for retry logic - these errors indicate transient connection issues
# that may be resolved by retrying

CONNECTION_ERROR_PATTERNS: Tuple[str, ...] = (
    "connection was closed",
    "connection is closed",
    "server closed the connection unexpectedly",
    "terminating connection due to administrator command",
    "the database system is starting up",
    "connection timeout",
    "timed out",
    "broken pipe",
    "connection refused",
    "connection reset",
    "network is unreachable",
    "no route to host",
)


def is_connection_error(error_message: str) -> bool:
    """
    Check if an error message indicates a connection-related issue.

    Args:
        error_message: The error message to check

    Returns:
        True if the error appears to be connection-related
    """
    error_lower = error_message.lower()
    return any(pattern in error_lower for pattern in CONNECTION_ERROR_PATTERNS)


# ============================================================================
# Critical Failure Patterns
# ============================================================================
# These errors will not go away on retry

CRITICAL_FAILURE_PATTERNS: Tuple[str, ...] = (
    "password authentication failed",
    "permission denied",
    "does not exist",
    "no pg_hba.conf entry",
)


def is_critical_failure(error_message: str) -> bool:
    """
    Check if an error message indicates a failure that retrying cannot fix.

    Args:
        error_message: The error message to check

    Returns:
        True if the error is critical and processing should stop
    """
    error_lower = error_message.lower()
    return any(pattern in error_lower for pattern in CRITICAL_FAILURE_PATTERNS)


# ============================================================================
# Retry Configuration
# ============================================================================

DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY_SECONDS: int = 2
MAX_RETRY_DELAY_SECONDS: int = 30


def calculate_retry_delay(attempt: int, base_delay: int = DEFAULT_RETRY_DELAY_SECONDS) -> int:
    """
    Calculate retry delay with exponential backoff.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds

    Returns:
        Delay in seconds (capped at MAX_RETRY_DELAY_SECONDS)
    """
    delay = base_delay * (2 ** attempt)
    return min(delay, MAX_RETRY_DELAY_SECONDS)


# ============================================================================
# CLI Exit Codes
# ============================================================================

EXIT_IDENTICAL: int = 0
EXIT_DIFFERENCES: int = 1
EXIT_BREAKING: int = 2
EXIT_FAILED: int = 3


# ============================================================================
# Snapshot Sources
# ============================================================================

DSN_PREFIXES: Tuple[str, ...] = ("postgres://", "postgresql://", "postgresql+")
