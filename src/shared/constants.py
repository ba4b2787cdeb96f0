"""Shared constants across the application."""

# Display-only label, never persisted
DISPLAY_STATUS_ORDER_CREATED = "order_created"

# Restore link targets
RESTORE_REDIRECTS = ("checkout", "cart")

# Recovery email steps
EMAIL_STEPS = (1, 2, 3)

# Cart token
CART_TOKEN_LENGTH = 32

# Cache keys
CACHE_PREFIX = "carts:"
CART_TOKEN_CACHE_KEY = CACHE_PREFIX + "token:{token}"
EMAIL_CANDIDATES_CACHE_KEY = CACHE_PREFIX + "email_candidates:{step}"
RECENT_CARTS_CACHE_KEY = CACHE_PREFIX + "recent:{limit}"
CART_STATS_CACHE_KEY = CACHE_PREFIX + "stats"
SETTINGS_CACHE_KEY = "cart_recovery:settings"
SCHEDULER_LOCK_KEY = "cart_recovery:scheduler_lock"

# Cache TTLs (seconds)
CART_TOKEN_CACHE_TTL = 300
EMAIL_CANDIDATES_CACHE_TTL = 60
AGGREGATE_CACHE_TTL = 120
SETTINGS_CACHE_TTL = 300

# Default limits
DEFAULT_RECENT_CARTS_LIMIT = 25
MAX_RECENT_CARTS_LIMIT = 100

# Option keys
SETTINGS_OPTION_KEY = "abandoned_cart_settings"
