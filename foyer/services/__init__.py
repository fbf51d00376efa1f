"""
Foyer — Services Layer
========================

Service Inventory:
    - cache.py:         the process-wide QueryCache
    - post_service.py:  posts store and query-cached reads
"""
