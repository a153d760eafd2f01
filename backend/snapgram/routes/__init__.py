# Routes package init
"""
Snapgram Backend — API Routes Package (View Layer)
====================================================

Route Inventory:
    - auth.py:   /api/auth/sign-up, sign-in, sign-out, me, me/location
    - posts.py:  /api/posts (create, recent, search, get/update/delete,
                 likes, save) and /api/saves/{id}
    - feed.py:   GET /api/feed, POST /api/feed/next
    - users.py:  /api/users (list, profile, followers, following, posts,
                 liked, saved, follow)
    - files.py:  GET /api/files/{file_id}/preview
    - health.py: GET /health

Handlers stay thin: parse the request, call SnapgramQueries, return DTOs.
Every failure is raised and turned into a JSON error envelope by the
handlers registered in main.py.
"""
