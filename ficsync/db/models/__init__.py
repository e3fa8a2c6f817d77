"""SQLAlchemy ORM models."""

from ficsync.db.models.accounts import Account, Subscription
from ficsync.db.models.events import Event
from ficsync.db.models.jobs import Job
from ficsync.db.models.resources import Client, Invoice, Quote, Supplier

__all__ = [
    "Account",
    "Subscription",
    "Event",
    "Job",
    "Client",
    "Supplier",
    "Invoice",
    "Quote",
]
