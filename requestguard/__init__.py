"""
RequestGuard: Package Initializer
===================================

What: Request-lifecycle core for a FastAPI application: trace context,
      locale resolution, dual-axis rate limiting, post-response observation
      and exception classification/reporting.
Who:  `requestguard.main:create_app` builds the application; `requestguard.main:app`
      is the instance uvicorn serves.

Layers:
    ┌─────────────────────────────────────┐
    │   Middleware (request lifecycle)    │  ← trace, locale, limits, errors
    ├─────────────────────────────────────┤
    │   Services (stores, limiter, report)│  ← no HTTP routing knowledge
    ├─────────────────────────────────────┤
    │   Models & Schemas (Data)           │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database (Persistence)            │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
