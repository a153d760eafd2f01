# Middleware package init
"""
Snapgram Backend — Middleware Package
=======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route
    Response ← same chain in reverse

    - Rate limiting rejects before anything else runs
    - The request ID exists before the access log line is written
    - The access log sees the final status code and duration
"""
