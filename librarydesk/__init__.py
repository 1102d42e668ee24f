"""Library Desk

A library-management backend:
- ``library``: book catalog and the borrow/return/extend/hold lifecycle
- ``services``: reservations, reviews, notifications and users
- ``access``: session context and role/ownership checks
- ``api``: FastAPI application
- ``cli``: typer commands (serve, notify worker, seeding, stats)
"""

__version__ = "1.0.0"
