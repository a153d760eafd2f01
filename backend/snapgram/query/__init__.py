"""
Snapgram Backend — Query/Cache Orchestration Layer
====================================================

What:  Cached, coalesced reads; mutations with declarative invalidation;
       per-session infinite feeds.

Modules:
    - keys.py:     QueryKey / Mutation names and the invalidation table
    - client.py:   QueryClient (cache, in-flight coalescing, invalidation)
    - infinite.py: InfiniteFeed pagination state machine
    - queries.py:  SnapgramQueries facade used by the routes
"""
