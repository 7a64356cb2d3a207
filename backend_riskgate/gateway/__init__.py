"""Request admission gateway: cache, rate limiter, ledger and the gate service."""
