"""
System-Wide Constants for the Identity Session Manager

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000
MINUTE_S: Final[int] = 60

# =============================================================================
# RETRY / BACKOFF
# =============================================================================
RETRY_BASE_DELAY_MS: Final[int] = 1 * SECOND_MS
RETRY_MAX_DELAY_MS: Final[int] = 10 * SECOND_MS
LOGIN_MAX_ATTEMPTS: Final[int] = 5
REGISTRATION_MAX_ATTEMPTS: Final[int] = 3

# Jitter multiplier lies in [JITTER_FLOOR, JITTER_FLOOR + JITTER_SPAN]
JITTER_FLOOR: Final[float] = 0.5
JITTER_SPAN: Final[float] = 0.5

# =============================================================================
# SESSION MONITOR
# =============================================================================
MONITOR_POLL_INTERVAL_S: Final[float] = 1 * MINUTE_S
REFRESH_THRESHOLD_S: Final[float] = 5 * MINUTE_S

# =============================================================================
# INPUT VALIDATION
# =============================================================================
MIN_SECRET_LENGTH: Final[int] = 6
IDENTIFIER_PATTERN: Final[str] = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# =============================================================================
# PROFILE STORE (PostgreSQL)
# =============================================================================
PROFILE_TABLE: Final[str] = "users"
PROFILE_POOL_MIN: Final[int] = 1
PROFILE_POOL_MAX: Final[int] = 5
PROFILE_QUERY_TIMEOUT_MS: Final[int] = 10 * SECOND_MS
