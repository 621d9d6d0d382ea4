"""
Database layer for the clinic authorization service.

This module provides:
- SQLAlchemy ORM models for tenant-owned entities
- Async database engine and session management
"""

from .models import (
    Base,
    Clinic,
    Branch,
    User,
    Patient,
    Subscription,
    Invoice,
    Payment,
    SubscriptionStatus,
    InvoiceStatus,
    PaymentStatus,
)

from .async_engine import (
    create_engine,
    get_async_engine,
    get_async_session,
    get_async_session_factory,
    get_db_session,
    check_database_connection,
    init_models,
    reset_engine,
)

__all__ = [
    "Base",
    "Clinic",
    "Branch",
    "User",
    "Patient",
    "Subscription",
    "Invoice",
    "Payment",
    "SubscriptionStatus",
    "InvoiceStatus",
    "PaymentStatus",
    "create_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_factory",
    "get_db_session",
    "check_database_connection",
    "init_models",
    "reset_engine",
]
