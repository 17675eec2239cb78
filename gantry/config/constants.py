"""
Gantry Configuration Constants.

Centralized constants for timeouts, limits, and other magic values.
"""

# Lock timing (seconds)
LOCK_DEFAULT_TTL = 120
LOCK_DEFAULT_RENEW_INTERVAL = 30
LOCK_ACQUIRE_ATTEMPTS = 1
LOCK_BACKOFF_INITIAL = 1.0
LOCK_BACKOFF_MAX = 30.0

# Apply
DEFAULT_CONCURRENCY = 10
MAX_CONCURRENCY = 256
DEFAULT_PROVIDER_RETRIES = 0
DEFAULT_MAX_REPLANS = 3

# State
DEFAULT_STATE_KEY = "default"
STATE_COMMIT_ATTEMPTS = 3

# Files
DEFAULT_CONFIG_FILENAME = "gantry.yaml"
DEFAULT_DECLARATIONS_FILENAME = "resources.yaml"

# CLI exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_LOCKED = 2
