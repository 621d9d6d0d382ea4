"""
SQLAlchemy ORM Models for tenant-owned clinic entities.

These are the entities the authorization engine guards. Every model except
Clinic carries a clinic_id column naming its owning tenant; a Clinic is its
own tenant. Each model declares a __resource_type__ tag used to pick its
attribute-based policy.

Architecture:
- Primary Keys: UUID for all tables (globally unique)
- Tenant Keys: clinic_id foreign key, indexed for list scoping
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Numeric, Boolean, Date, DateTime, Enum, ForeignKey, Index
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base


Base = declarative_base()


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SubscriptionStatus(str, PyEnum):
    """Clinic subscription lifecycle."""
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class InvoiceStatus(str, PyEnum):
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# =============================================================================
# TENANT
# =============================================================================

class Clinic(Base):
    """A tenant. Its own id is the tenant id used for isolation."""
    __tablename__ = "clinics"
    __resource_type__ = "clinic"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def clinic_id(self):
        return self.id

    def __repr__(self):
        return f"<Clinic(id={self.id}, name={self.name})>"


class Branch(Base):
    __tablename__ = "branches"
    __resource_type__ = "branch"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    clinic_id = Column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Branch(id={self.id}, clinic={self.clinic_id})>"


# =============================================================================
# USERS
# =============================================================================

class User(Base):
    """
    Clinic staff account.

    A user holds exactly one role. Platform staff (super-admins, support)
    have no clinic_id.
    """
    __tablename__ = "users"
    __resource_type__ = "user"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=True)
    role_id = Column(
        UUID(as_uuid=True),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )
    clinic_id = Column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"


class Patient(Base):
    __tablename__ = "patients"
    __resource_type__ = "patient"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    clinic_id = Column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    full_name = Column(String(200), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# =============================================================================
# BILLING
# =============================================================================

class Subscription(Base):
    """Clinic subscription. Terms may only be altered by platform staff."""
    __tablename__ = "subscriptions"
    __resource_type__ = "subscription"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    clinic_id = Column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    plan = Column(String(100), nullable=False)
    status = Column(Enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.TRIAL)
    starts_on = Column(Date, nullable=True)
    ends_on = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_subscription_clinic_status", "clinic_id", "status"),
    )


class Invoice(Base):
    __tablename__ = "invoices"
    __resource_type__ = "invoice"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    clinic_id = Column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    subscription_id = Column(
        UUID(as_uuid=True),
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
        nullable=True
    )
    number = Column(String(50), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT)
    due_on = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Payment(Base):
    __tablename__ = "payments"
    __resource_type__ = "payment"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    clinic_id = Column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    invoice_id = Column(
        UUID(as_uuid=True),
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True
    )
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
