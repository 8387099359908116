"""Domain Enums"""
from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class CancellationPolicy(str, Enum):
    FLEXIBLE = "FLEXIBLE"
    MODERATE = "MODERATE"
    FIXED = "FIXED"


class CancelledBy(str, Enum):
    GUEST = "GUEST"
    HOST = "HOST"


class PropertyStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    UNLISTED = "UNLISTED"
    SUSPENDED = "SUSPENDED"


class PropertyType(str, Enum):
    APARTMENT = "APARTMENT"
    HOUSE = "HOUSE"
    VILLA = "VILLA"
    STUDIO = "STUDIO"
    CONDO = "CONDO"
    TOWNHOUSE = "TOWNHOUSE"


class AmenityCategory(str, Enum):
    ESSENTIAL = "essential"
    FEATURE = "feature"
    SAFETY = "safety"


class UserRole(str, Enum):
    GUEST = "GUEST"
    HOST = "HOST"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class VerificationStatus(str, Enum):
    UNVERIFIED = "UNVERIFIED"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    PHONE_VERIFIED = "PHONE_VERIFIED"
    ID_VERIFIED = "ID_VERIFIED"
    FULLY_VERIFIED = "FULLY_VERIFIED"


# Statuses that occupy the property calendar
BLOCKING_BOOKING_STATUSES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
})
