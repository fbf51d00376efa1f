"""
Foyer — Package Initializer
=============================

What: Request-lifecycle middleware pipeline plus a deduplicating
      server-function query cache, with a FastAPI service on top.

Architecture Note:

    ┌─────────────────────────────────────┐
    │       Routes / Services (app)       │  ← FastAPI demo service
    ├─────────────────────────────────────┤
    │   middleware/  (Starlette adapter,  │  ← built-in stages, transport glue
    │                 built-in stages)    │
    ├──────────────────┬──────────────────┤
    │    pipeline/     │     query/       │  ← framework-free core
    └──────────────────┴──────────────────┘

    The core packages only depend on Starlette's header datastructures;
    they can be embedded without the service layer.
"""

__version__ = "1.0.0"
