import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
)

from alumni_payments.database import Base


def utcnow() -> datetime:
    # Naive UTC; SQLite does not keep tzinfo
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class PaymentType(str, enum.Enum):
    ANNUAL_FEE = "ANNUAL_FEE"
    DONATION = "DONATION"
    EVENT_FEE = "EVENT_FEE"
    OTHER = "OTHER"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class Tenant(Base):
    """Alumni association site. Owned by tenant management; read-only here."""

    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    subdomain = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=new_id)
    tenant_id = Column(String, ForeignKey("tenants.id"), index=True, nullable=False)
    external_session_id = Column(String, unique=True, index=True, nullable=False)   # Checkout Session ID
    external_payment_reference_id = Column(String, unique=True, index=True)         # PaymentIntent ID
    type = Column(Enum(PaymentType, native_enum=False), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String, default="jpy", nullable=False)
    status = Column(
        Enum(PaymentStatus, native_enum=False),
        default=PaymentStatus.PENDING,
        index=True,
        nullable=False,
    )
    payer_email = Column(String, index=True)
    payer_name = Column(String)
    is_anonymous = Column(Boolean, default=False, nullable=False)
    description = Column(Text)
    event_id = Column(String)
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", JSON, default=dict, nullable=False)
    completed_at = Column(DateTime)
    refunded_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, index=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class PaymentSettings(Base):
    __tablename__ = "payment_settings"

    id = Column(String, primary_key=True, default=new_id)
    tenant_id = Column(String, ForeignKey("tenants.id"), unique=True, index=True, nullable=False)
    annual_fee_enabled = Column(Boolean, default=False, nullable=False)
    annual_fee_amount = Column(Integer, default=5000, nullable=False)
    annual_fee_description = Column(Text)
    donation_enabled = Column(Boolean, default=False, nullable=False)
    donation_min_amount = Column(Integer, default=1000, nullable=False)
    donation_max_amount = Column(Integer, default=1_000_000, nullable=False)
    donation_presets = Column(JSON, nullable=False)
    show_donor_list = Column(Boolean, default=True, nullable=False)
    allow_anonymous = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
