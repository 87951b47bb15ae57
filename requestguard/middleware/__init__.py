"""
RequestGuard: Middleware Package
==================================

What:  The request lifecycle, one concern per middleware.

Chain (outermost first):
    GZip → Terminating → CORS → Session → Authentication → Locale
        → TraceContext → RequestLogging → RateLimiting → ExceptionReporting
        → Route Handler

    - GZip wraps everything, so Terminating sees uncompressed bodies.
    - Terminating observes the final response after it is sent and drives the
      rate limiter post-check.
    - Session and Authentication come from Starlette; everything below them
      can read request.session and request.user.
    - TraceContext must run before anything that logs.
    - RateLimiting rejects over-budget clients before the handler runs.
    - ExceptionReporting turns handler exceptions into reported responses,
      which then pick up trace headers on the way out.

main.create_app() adds them in reverse order (last added = outermost).
"""
