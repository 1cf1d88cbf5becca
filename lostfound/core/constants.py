"""Application constants."""

# Platform keeps 10% of every settled payment. Never configurable, never
# accepted from clients.
PLATFORM_FEE_PERCENT = 10

# System default shipping configuration (minor currency units)
SYSTEM_DEFAULT_SHIPPING_FEE = 500
SYSTEM_MIN_SHIPPING_FEE = 300
SYSTEM_MAX_SHIPPING_FEE = 2000

# Client-side settlement polling bounds
SETTLEMENT_POLL_ATTEMPTS = 5
SETTLEMENT_POLL_INTERVAL_SECONDS = 2.0
