"""
Snapgram Backend — Application Package
========================================

What: Social feed backend (accounts, posts, likes/saves, follow graph and
      geolocation-filtered discovery).
Who:  Imported by uvicorn (`uvicorn snapgram.main:app`), pytest and the
      services below.

Architecture Note:

    ┌─────────────────────────────────────┐
    │        Routes (View Layer)          │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Query Layer (cache + mutations)   │  ← coalescing, invalidation
    ├─────────────────────────────────────┤
    │  Services (feed resolver, flows)    │  ← geo filtering, multi-step writes
    ├─────────────────────────────────────┤
    │  Backend Gateway (documents, files) │  ← typed DTOs, error translation
    └─────────────────────────────────────┘

    Reads flow top to bottom and the result is cached on the way back up.
    Writes go through a mutation, and on success the mutation marks the
    dependent cached queries stale.
"""

__version__ = "1.0.0"
