"""
Engine-Wide Constants

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND: Final[float] = 1.0
MINUTE: Final[float] = 60 * SECOND
HOUR: Final[float] = 60 * MINUTE

# =============================================================================
# SESSION LIMITS
# =============================================================================
MIN_INTERVAL_SECONDS: Final[int] = 1
MIN_TARGET_COUNT: Final[int] = 1
MAX_ACTIVE_SESSIONS: Final[int] = 0  # 0 = unlimited

# =============================================================================
# SCHEDULER
# =============================================================================
SAFETY_MARGIN_SECONDS: Final[float] = 5 * MINUTE
CLEANUP_GRACE_SECONDS: Final[float] = 1 * HOUR
ACTION_TIMEOUT_SECONDS: Final[float] = 15 * SECOND
SETUP_TIMEOUT_SECONDS: Final[float] = 15 * SECOND
RESOLVER_TIMEOUT_SECONDS: Final[float] = 10 * SECOND

# =============================================================================
# HTTP COLLABORATORS
# =============================================================================
DEFAULT_RESOLVER_ID_FIELD: Final[str] = "id"
DEFAULT_ACTION_METHOD: Final[str] = "POST"
DEFAULT_USER_AGENT: Final[str] = "cadence/1.0"

# =============================================================================
# SEARCH
# =============================================================================
SEARCH_KIND_ANY: Final[str] = "all"
