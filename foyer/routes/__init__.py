"""
Foyer — API Routes Package
============================

Route Inventory:
    - posts.py:   /api/posts, /api/posts/{id}, /api/queries/invalidate
    - health.py:  GET /health

Routes stay thin: they call services and shape HTTP responses.
"""
