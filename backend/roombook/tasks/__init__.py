# backend/roombook/tasks/__init__.py
"""
Celery tasks package.

Periodic jobs: expiry cleanup of unpaid bookings.
"""
