# Services package init
"""
RequestGuard: Services Layer
==============================

Service Inventory:
    - cache.KeyValueStore:   Shared counter/flag store (MemoryStore, RedisStore)
    - rate_limiter:          Attempt counters with a fixed decay window
    - exception_service:     Classify, report and render exceptions

Middleware depends on these; none of them know about HTTP routing.
"""
