# Services package init
"""
Snapgram Backend — Services Layer
===================================

What:  Everything between the query layer and the document/file stores.

Service Inventory:
    - BackendGateway: typed document, account and file operations
    - StorageService: image upload validation, storage and deletion
    - FeedResolver: geo-filtered feed pages (geo.py holds the math)
    - AccountService: sign-up, sign-in, sign-out, location updates
    - PostService: post writes with compensating cleanup, likes, saves
    - SocialService: user directory and follow graph
    - resilience: circuit breaker and retry policy used by the gateway
"""
