"""
SQLAlchemy Models

Relational schema in the storage vocabulary. The storage enums below are not
the domain enums: mappers translate between the two.
Uses SQLAlchemy 2.0 style with Mapped[] type annotations.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ==================== STORAGE VOCABULARY ====================

class BookingStatusColumn(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class CancellationPolicyColumn(str, Enum):
    FLEXIBLE = "FLEXIBLE"
    MODERATE = "MODERATE"
    STRICT = "STRICT"


class PaymentStatusColumn(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class PropertyStatusColumn(str, Enum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    PUBLISHED = "PUBLISHED"
    UNLISTED = "UNLISTED"
    SUSPENDED = "SUSPENDED"


class PropertyTypeColumn(str, Enum):
    APARTMENT = "APARTMENT"
    HOUSE = "HOUSE"
    VILLA = "VILLA"
    STUDIO = "STUDIO"
    CONDO = "CONDO"
    TOWNHOUSE = "TOWNHOUSE"


class AccountStatusColumn(str, Enum):
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


# ==================== TABLES ====================

class PropertyModel(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    host_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    property_type: Mapped[PropertyTypeColumn] = mapped_column(
        SQLEnum(PropertyTypeColumn, name="property_type"), nullable=False
    )
    status: Mapped[PropertyStatusColumn] = mapped_column(
        SQLEnum(PropertyStatusColumn, name="property_status"),
        nullable=False,
        default=PropertyStatusColumn.DRAFT,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Address
    street: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    country: Mapped[str] = mapped_column(String(120), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Pricing & capacity
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cleaning_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    bedrooms: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    bathrooms: Mapped[Decimal] = mapped_column(Numeric(4, 1), nullable=False, default=1)
    beds: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    amenities: Mapped[List[dict]] = mapped_column(JSON, nullable=False, default=list)
    images: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # House rules
    check_in_time: Mapped[str] = mapped_column(String(5), nullable=False, default="15:00")
    check_out_time: Mapped[str] = mapped_column(String(5), nullable=False, default="11:00")
    pets_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    smoking_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    events_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    minimum_stay: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    maximum_stay: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    instant_booking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    suspension_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class BookingModel(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_property_dates", "property_id", "check_in_date", "check_out_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    property_id: Mapped[str] = mapped_column(String(36), ForeignKey("properties.id"), nullable=False)
    guest_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    host_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    number_of_nights: Mapped[int] = mapped_column(Integer, nullable=False)
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # Price breakdown
    nightly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    service_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    cleaning_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[BookingStatusColumn] = mapped_column(
        SQLEnum(BookingStatusColumn, name="booking_status"),
        nullable=False,
        default=BookingStatusColumn.PENDING,
        index=True,
    )
    # NULL on rows written before the policy was stored
    cancellation_policy: Mapped[Optional[CancellationPolicyColumn]] = mapped_column(
        SQLEnum(CancellationPolicyColumn, name="cancellation_policy"), nullable=True
    )
    payment_status: Mapped[PaymentStatusColumn] = mapped_column(
        SQLEnum(PaymentStatusColumn, name="payment_status"),
        nullable=False,
        default=PaymentStatusColumn.PENDING,
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class BookingNightModel(Base):
    """One row per occupied night of a calendar-blocking booking

    The primary key makes a night of a property claimable by one booking only.
    """
    __tablename__ = "booking_nights"

    property_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    night: Mapped[date] = mapped_column(Date, primary_key=True)
    booking_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )


class UserModel(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index(
            "uq_users_email_live",
            "email",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    country_code: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)

    is_host: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    account_status: Mapped[AccountStatusColumn] = mapped_column(
        SQLEnum(AccountStatusColumn, name="account_status"),
        nullable=False,
        default=AccountStatusColumn.ACTIVE,
    )

    # Verification flags
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    id_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    kyc_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class FavoriteModel(Base):
    __tablename__ = "favorites"
    __table_args__ = (
        Index(
            "uq_favorites_user_property_live",
            "user_id",
            "property_id",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    property_id: Mapped[str] = mapped_column(String(36), ForeignKey("properties.id"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
