"""Library Desk - Services Package

Handlers that sit beside the book lifecycle in ``librarydesk.library``:
- Reservation queue (pending/confirmed/cancelled rows)
- Reviews and the derived rating cache on books
- Due/overdue notification scan, inbox and preferences
- User registration, login and administration
"""
