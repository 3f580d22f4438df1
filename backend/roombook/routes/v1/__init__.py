# backend/roombook/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import admin_bookings, bookings, credits, cron, webhooks_asaas

__all__ = [
    "admin_bookings",
    "bookings",
    "credits",
    "cron",
    "webhooks_asaas",
]
