"""Domain Entities - Aggregates"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError, model_validator

from domain.enums import (
    BLOCKING_BOOKING_STATUSES,
    BookingStatus,
    CancellationPolicy,
    CancelledBy,
    PropertyStatus,
    PropertyType,
    UserRole,
    UserStatus,
    VerificationStatus,
)
from domain.exceptions import (
    BusinessRuleViolationError,
    CurrencyMismatchError,
    InvalidDateRangeError,
    InvalidGuestCountError,
    InvalidStatusTransitionError,
    ValidationException,
)
from domain.value_objects import (
    Address,
    Amenity,
    DateRange,
    Email,
    Money,
    PhoneNumber,
    PriceBreakdown,
    PropertyRules,
    RefundQuote,
    describe_validation_error,
)

MAX_GUEST_COUNT = 50
MAX_DAYS_IN_ADVANCE = 730


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def _build(entity_cls, fields: dict):
    """Validate fields into an entity; pydantic type errors surface as ValidationException"""
    try:
        return entity_cls.model_validate(fields)
    except ValidationError as e:
        raise ValidationException(
            f"Invalid {entity_cls.__name__.lower()}: {describe_validation_error(e)}"
        ) from e


def _require_text(value: Optional[str], field: str, label: str) -> None:
    if not value or not value.strip():
        raise ValidationException(f"{label} is required", field=field)


# Allowed edges of the booking lifecycle. Terminal states have no outgoing edge.
BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.REJECTED: frozenset(),
}

# (minimum days before check-in, refund percentage), checked in order
REFUND_SCHEDULE: Dict[CancellationPolicy, List[tuple]] = {
    CancellationPolicy.FLEXIBLE: [(1, 100)],
    CancellationPolicy.MODERATE: [(5, 100), (1, 50)],
    CancellationPolicy.FIXED: [(14, 100), (7, 50)],
}

PROPERTY_TRANSITIONS: Dict[PropertyStatus, FrozenSet[PropertyStatus]] = {
    PropertyStatus.DRAFT: frozenset({PropertyStatus.PUBLISHED, PropertyStatus.SUSPENDED}),
    PropertyStatus.PUBLISHED: frozenset({PropertyStatus.UNLISTED, PropertyStatus.SUSPENDED}),
    PropertyStatus.UNLISTED: frozenset({PropertyStatus.PUBLISHED, PropertyStatus.SUSPENDED}),
    PropertyStatus.SUSPENDED: frozenset({PropertyStatus.DRAFT}),
}


def _ensure_covers(table: Dict, members) -> None:
    missing = set(members) - set(table)
    if missing:
        raise RuntimeError(f"Table keyed by {members.__name__} misses {sorted(m.name for m in missing)}")


_ensure_covers(BOOKING_TRANSITIONS, BookingStatus)
_ensure_covers(REFUND_SCHEDULE, CancellationPolicy)
_ensure_covers(PROPERTY_TRANSITIONS, PropertyStatus)


class Booking(BaseModel):
    """Booking Aggregate Root Entity

    New bookings come from ``create``; rows loaded from storage go through
    ``reconstitute``. Both paths run the same invariant checks. Status only
    changes through ``confirm``, ``cancel``, ``complete`` and ``reject``.
    """

    # Identity
    id: str = Field(default_factory=new_id)

    # References to other aggregates
    property_id: str
    guest_id: str
    host_id: str

    # Value Objects
    date_range: DateRange
    price_per_night: Money
    total_price: Money
    guest_count: int

    # Status
    status: BookingStatus = BookingStatus.PENDING
    cancellation_policy: CancellationPolicy = CancellationPolicy.MODERATE
    cancellation_reason: Optional[str] = None

    # Metadata
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_invariants(self) -> "Booking":
        _require_text(self.property_id, "property_id", "Property ID")
        _require_text(self.guest_id, "guest_id", "Guest ID")
        _require_text(self.host_id, "host_id", "Host ID")
        Booking._validate_guest_count(self.guest_count)
        if self.total_price.currency != self.price_per_night.currency:
            raise CurrencyMismatchError(self.price_per_night.currency, self.total_price.currency)
        return self

    # ==================== FACTORY METHODS ====================
    @classmethod
    def create(
        cls,
        property_id: str,
        guest_id: str,
        host_id: str,
        date_range: DateRange,
        price_per_night: Money,
        guest_count: int,
        cancellation_policy: CancellationPolicy = CancellationPolicy.MODERATE,
        today: Optional[date] = None,
    ) -> "Booking":
        """Create a new PENDING booking priced at price_per_night * nights

        Check-in must be after ``today`` and at most MAX_DAYS_IN_ADVANCE
        days ahead of it.
        """
        cls._validate_guest_count(guest_count)
        cls._validate_booking_window(date_range, today or date.today())
        now = utc_now()
        return _build(cls, dict(
            property_id=property_id,
            guest_id=guest_id,
            host_id=host_id,
            date_range=date_range,
            price_per_night=price_per_night,
            total_price=price_per_night.multiply(date_range.number_of_nights),
            guest_count=guest_count,
            status=BookingStatus.PENDING,
            cancellation_policy=cancellation_policy,
            created_at=now,
            updated_at=now,
        ))

    @classmethod
    def reconstitute(cls, **fields) -> "Booking":
        """Rebuild a booking from a fully populated record"""
        return _build(cls, fields)

    # ==================== STATE TRANSITION METHODS ====================
    def confirm(self, today: Optional[date] = None) -> None:
        """PENDING -> CONFIRMED, refused once the stay is over"""
        if self.can_transition_to(BookingStatus.CONFIRMED) and self.date_range.is_in_past(today):
            raise BusinessRuleViolationError(
                "booking_not_past",
                "Cannot confirm booking with past dates",
                {"end_date": self.date_range.end_date.isoformat()},
            )
        now = self._transition_to(BookingStatus.CONFIRMED)
        self.confirmed_at = self.confirmed_at or now

    def reject(self, reason: Optional[str] = None) -> None:
        """PENDING -> REJECTED"""
        self._transition_to(BookingStatus.REJECTED)
        self.cancellation_reason = reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """PENDING/CONFIRMED -> CANCELLED"""
        now = self._transition_to(BookingStatus.CANCELLED)
        self.cancelled_at = self.cancelled_at or now
        self.cancellation_reason = reason

    def complete(self, today: Optional[date] = None) -> None:
        """CONFIRMED -> COMPLETED, allowed from the checkout day on"""
        if self.can_transition_to(BookingStatus.COMPLETED) and not self.date_range.is_in_past(today):
            raise BusinessRuleViolationError(
                "stay_ended_before_complete",
                "Cannot complete booking before end date",
                {"end_date": self.date_range.end_date.isoformat()},
            )
        self._transition_to(BookingStatus.COMPLETED)

    def _transition_to(self, target: BookingStatus) -> datetime:
        if not self.can_transition_to(target):
            raise InvalidStatusTransitionError("Booking", self.status, target)
        now = utc_now()
        self.status = target
        self.updated_at = now
        return now

    # ==================== QUERY METHODS ====================
    def can_transition_to(self, target: BookingStatus) -> bool:
        return target in BOOKING_TRANSITIONS[self.status]

    def can_be_cancelled(self) -> bool:
        return self.can_transition_to(BookingStatus.CANCELLED)

    def is_active(self) -> bool:
        return self.status in (BookingStatus.PENDING, BookingStatus.CONFIRMED)

    def blocks_calendar(self) -> bool:
        return self.status in BLOCKING_BOOKING_STATUSES

    def overlaps(self, other: "Booking") -> bool:
        """True when both bookings claim at least one common night of one property"""
        if self.property_id != other.property_id:
            return False
        if not (self.blocks_calendar() and other.blocks_calendar()):
            return False
        return self.date_range.overlaps(other.date_range)

    def is_upcoming(self, today: Optional[date] = None) -> bool:
        return self.is_active() and self.date_range.is_in_future(today)

    def is_current(self, today: Optional[date] = None) -> bool:
        return self.status == BookingStatus.CONFIRMED and self.date_range.is_current(today)

    @property
    def number_of_nights(self) -> int:
        return self.date_range.number_of_nights

    def calculate_refund(
        self,
        cancelled_by: CancelledBy = CancelledBy.GUEST,
        on_date: Optional[date] = None,
    ) -> RefundQuote:
        """Refund owed if the booking were cancelled on on_date"""
        if cancelled_by == CancelledBy.HOST:
            percentage = 100
        else:
            days_until_check_in = (self.date_range.start_date - (on_date or date.today())).days
            percentage = 0
            for min_days, refund_pct in REFUND_SCHEDULE[self.cancellation_policy]:
                if days_until_check_in >= min_days:
                    percentage = refund_pct
                    break
        return RefundQuote(refund=self.total_price.percentage(percentage), percentage=percentage)

    # ==================== PRIVATE VALIDATION METHODS ====================
    @staticmethod
    def _validate_guest_count(guest_count: int) -> None:
        if guest_count < 1:
            raise InvalidGuestCountError(guest_count, "Guest count must be at least 1")
        if guest_count > MAX_GUEST_COUNT:
            raise InvalidGuestCountError(
                guest_count, f"Guest count cannot exceed {MAX_GUEST_COUNT}", maximum=MAX_GUEST_COUNT
            )

    @staticmethod
    def _validate_booking_window(date_range: DateRange, today: date) -> None:
        if not date_range.is_in_future(today):
            raise InvalidDateRangeError("Booking dates must be in the future", field="start_date")
        days_until_check_in = (date_range.start_date - today).days
        if days_until_check_in > MAX_DAYS_IN_ADVANCE:
            raise InvalidDateRangeError(
                f"Cannot book more than {MAX_DAYS_IN_ADVANCE} days in advance",
                field="start_date",
                details={"max_days_in_advance": MAX_DAYS_IN_ADVANCE},
            )


class Property(BaseModel):
    """Property Aggregate Root Entity

    Never removed, only moved between statuses.
    """

    # Identity
    id: str = Field(default_factory=new_id)
    host_id: str

    # Listing
    title: str
    description: str = ""
    property_type: PropertyType = PropertyType.APARTMENT
    status: PropertyStatus = PropertyStatus.DRAFT
    address: Address

    # Pricing & capacity
    base_price: Money
    cleaning_fee: Optional[Money] = None
    max_guests: int
    bedrooms: int = 1
    bathrooms: Decimal = Decimal("1")
    beds: int = 1

    # Collections
    amenities: List[Amenity] = Field(default_factory=list)
    rules: PropertyRules = Field(default_factory=PropertyRules)
    images: List[str] = Field(default_factory=list)

    # Stay configuration
    minimum_stay: int = 1
    maximum_stay: Optional[int] = None
    instant_booking: bool = False

    # Moderation & metadata
    suspension_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    published_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_invariants(self) -> "Property":
        _require_text(self.host_id, "host_id", "Host ID")
        _require_text(self.title, "title", "Title")
        if self.max_guests < 1:
            raise ValidationException("Maximum guests must be at least 1", field="max_guests")
        if self.bedrooms < 0 or self.beds < 0 or self.bathrooms < 0:
            raise ValidationException("Room counts cannot be negative", field="bedrooms")
        if self.minimum_stay < 1:
            raise ValidationException("Minimum stay must be at least 1 night", field="minimum_stay")
        if self.maximum_stay is not None and self.maximum_stay < self.minimum_stay:
            raise ValidationException("Maximum stay must not be shorter than minimum stay", field="maximum_stay")
        if self.cleaning_fee is not None and self.cleaning_fee.currency != self.base_price.currency:
            raise CurrencyMismatchError(self.base_price.currency, self.cleaning_fee.currency)
        return self

    # ==================== FACTORY METHODS ====================
    @classmethod
    def create(cls, **fields) -> "Property":
        """Create a new DRAFT listing"""
        fields.pop("id", None)
        fields.pop("published_at", None)
        fields["status"] = PropertyStatus.DRAFT
        return _build(cls, fields)

    @classmethod
    def reconstitute(cls, **fields) -> "Property":
        return _build(cls, fields)

    # ==================== STATUS METHODS ====================
    def publish(self) -> None:
        if not self.images and self.can_transition_to(PropertyStatus.PUBLISHED):
            raise BusinessRuleViolationError(
                "property_requires_image", "Property must have at least one image to be published"
            )
        now = self._transition_to(PropertyStatus.PUBLISHED)
        self.published_at = self.published_at or now

    def unlist(self) -> None:
        if self.status != PropertyStatus.PUBLISHED:
            raise InvalidStatusTransitionError("Property", self.status, PropertyStatus.UNLISTED)
        self._transition_to(PropertyStatus.UNLISTED)

    def suspend(self, reason: str) -> None:
        _require_text(reason, "reason", "Suspension reason")
        self._transition_to(PropertyStatus.SUSPENDED)
        self.suspension_reason = reason

    def reinstate(self) -> None:
        self._transition_to(PropertyStatus.DRAFT)
        self.suspension_reason = None

    def can_transition_to(self, target: PropertyStatus) -> bool:
        return target in PROPERTY_TRANSITIONS[self.status]

    def _transition_to(self, target: PropertyStatus) -> datetime:
        if not self.can_transition_to(target):
            raise InvalidStatusTransitionError("Property", self.status, target)
        now = utc_now()
        self.status = target
        self.updated_at = now
        return now

    # ==================== MODIFICATION METHODS ====================
    def update_details(
        self,
        title: Optional[str] = None,
        description: Optional[str] = None,
        base_price: Optional[Money] = None,
        cleaning_fee: Optional[Money] = None,
        max_guests: Optional[int] = None,
        minimum_stay: Optional[int] = None,
        maximum_stay: Optional[int] = None,
        instant_booking: Optional[bool] = None,
    ) -> None:
        """Apply host edits; the whole edit is rejected if the result is invalid"""
        changes = {
            "title": title,
            "description": description,
            "base_price": base_price,
            "cleaning_fee": cleaning_fee,
            "max_guests": max_guests,
            "minimum_stay": minimum_stay,
            "maximum_stay": maximum_stay,
            "instant_booking": instant_booking,
        }
        changes = {name: value for name, value in changes.items() if value is not None}
        candidate = _build(type(self), {**self.__dict__, **changes})
        for name in changes:
            setattr(self, name, getattr(candidate, name))
        self.updated_at = utc_now()

    def add_amenity(self, amenity: Amenity) -> None:
        if self.has_amenity(amenity.id):
            raise BusinessRuleViolationError("unique_amenity", f"Amenity {amenity.id} already exists")
        self.amenities.append(amenity)
        self.updated_at = utc_now()

    def remove_amenity(self, amenity_id: str) -> None:
        if not self.has_amenity(amenity_id):
            raise BusinessRuleViolationError("amenity_exists", f"Amenity {amenity_id} not found")
        self.amenities = [a for a in self.amenities if a.id != amenity_id]
        self.updated_at = utc_now()

    def add_image(self, image_url: str) -> None:
        _require_text(image_url, "image_url", "Image URL")
        if image_url in self.images:
            raise BusinessRuleViolationError("unique_image", "Image already exists")
        self.images.append(image_url)
        self.updated_at = utc_now()

    def remove_image(self, image_url: str) -> None:
        if image_url not in self.images:
            raise BusinessRuleViolationError("image_exists", "Image not found")
        if self.status == PropertyStatus.PUBLISHED and len(self.images) == 1:
            raise BusinessRuleViolationError(
                "property_requires_image", "Published property must have at least one image"
            )
        self.images.remove(image_url)
        self.updated_at = utc_now()

    def update_rules(self, **changes) -> None:
        self.rules = PropertyRules(**{**self.rules.model_dump(), **changes})
        self.updated_at = utc_now()

    # ==================== QUERY METHODS ====================
    def can_accommodate(self, guest_count: int) -> bool:
        return 0 < guest_count <= self.max_guests

    def is_available_for_booking(self) -> bool:
        return self.status == PropertyStatus.PUBLISHED

    def is_owned_by(self, host_id: str) -> bool:
        return self.host_id == host_id

    def has_amenity(self, amenity_id: str) -> bool:
        return any(a.id == amenity_id for a in self.amenities)

    def validate_stay(self, date_range: DateRange) -> None:
        nights = date_range.number_of_nights
        if nights < self.minimum_stay:
            raise InvalidDateRangeError(
                f"Minimum stay is {self.minimum_stay} night(s)", details={"nights": nights}
            )
        if self.maximum_stay is not None and nights > self.maximum_stay:
            raise InvalidDateRangeError(
                f"Maximum stay is {self.maximum_stay} nights", details={"nights": nights}
            )

    def calculate_total_price(self, date_range: DateRange, guest_count: int) -> PriceBreakdown:
        if not self.can_accommodate(guest_count):
            raise InvalidGuestCountError(
                guest_count, f"Guest count must be between 1 and {self.max_guests}", maximum=self.max_guests
            )
        self.validate_stay(date_range)
        nights = date_range.number_of_nights
        nights_price = self.base_price.multiply(nights)
        cleaning_fee = self.cleaning_fee or Money.zero(self.base_price.currency)
        return PriceBreakdown(
            number_of_nights=nights,
            price_per_night=self.base_price,
            nights_price=nights_price,
            cleaning_fee=cleaning_fee,
            total_price=nights_price.add(cleaning_fee),
        )


_VERIFICATION_RANK = [
    VerificationStatus.UNVERIFIED,
    VerificationStatus.EMAIL_VERIFIED,
    VerificationStatus.PHONE_VERIFIED,
    VerificationStatus.ID_VERIFIED,
    VerificationStatus.FULLY_VERIFIED,
]


class User(BaseModel):
    """User Aggregate Root Entity"""

    id: str = Field(default_factory=new_id)
    email: Email
    phone_number: Optional[PhoneNumber] = None
    first_name: str
    last_name: str
    roles: List[UserRole] = Field(default_factory=lambda: [UserRole.GUEST])
    status: UserStatus = UserStatus.ACTIVE
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_invariants(self) -> "User":
        _require_text(self.first_name, "first_name", "First name")
        _require_text(self.last_name, "last_name", "Last name")
        if UserRole.GUEST not in self.roles:
            raise ValidationException("Every user holds the GUEST role", field="roles")
        self.roles = [r for r in UserRole if r in self.roles]
        return self

    @classmethod
    def create(
        cls,
        email: Email,
        first_name: str,
        last_name: str,
        phone_number: Optional[PhoneNumber] = None,
    ) -> "User":
        return _build(
            cls, dict(email=email, first_name=first_name, last_name=last_name, phone_number=phone_number)
        )

    @classmethod
    def reconstitute(cls, **fields) -> "User":
        return _build(cls, fields)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    # ==================== ROLES ====================
    def add_role(self, role: UserRole) -> None:
        if role in self.roles:
            raise BusinessRuleViolationError("unique_role", f"User already has {role.value} role")
        # roles are kept in declaration order
        self.roles = [r for r in UserRole if r in self.roles or r == role]
        self.updated_at = utc_now()

    def remove_role(self, role: UserRole) -> None:
        if role not in self.roles:
            raise BusinessRuleViolationError("role_assigned", f"User does not have {role.value} role")
        if role == UserRole.GUEST:
            raise BusinessRuleViolationError("user_requires_guest_role", "The GUEST role cannot be removed")
        self.roles = [r for r in self.roles if r != role]
        self.updated_at = utc_now()

    def has_role(self, role: UserRole) -> bool:
        return role in self.roles

    def is_host(self) -> bool:
        return UserRole.HOST in self.roles

    def is_admin(self) -> bool:
        return UserRole.ADMIN in self.roles

    # ==================== VERIFICATION ====================
    def verify_email(self) -> None:
        self._raise_verification(VerificationStatus.EMAIL_VERIFIED)

    def verify_phone(self) -> None:
        if self.phone_number is None:
            raise BusinessRuleViolationError("phone_required", "Phone number must be set before verification")
        self._raise_verification(VerificationStatus.PHONE_VERIFIED)

    def verify_id(self) -> None:
        self._raise_verification(VerificationStatus.ID_VERIFIED)

    def mark_fully_verified(self) -> None:
        self._raise_verification(VerificationStatus.FULLY_VERIFIED)

    def is_verified(self) -> bool:
        return self.verification_status != VerificationStatus.UNVERIFIED

    def _raise_verification(self, level: VerificationStatus) -> None:
        # verification never goes down
        if _VERIFICATION_RANK.index(level) > _VERIFICATION_RANK.index(self.verification_status):
            self.verification_status = level
            self.updated_at = utc_now()

    # ==================== ACCOUNT STATUS ====================
    def suspend(self, reason: str) -> None:
        _require_text(reason, "reason", "Suspension reason")
        self._set_status(UserStatus.SUSPENDED)

    def ban(self, reason: str) -> None:
        _require_text(reason, "reason", "Ban reason")
        self._set_status(UserStatus.BANNED)

    def reactivate(self) -> None:
        self._set_status(UserStatus.ACTIVE)

    def deactivate(self) -> None:
        self._set_status(UserStatus.INACTIVE)

    def _set_status(self, target: UserStatus) -> None:
        if self.status == target:
            raise InvalidStatusTransitionError("User", self.status, target)
        self.status = target
        self.updated_at = utc_now()

    def record_login(self) -> None:
        self.last_login_at = utc_now()

    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def can_book(self) -> bool:
        return self.is_active() and UserRole.GUEST in self.roles


class Favorite(BaseModel):
    """Favorite Entity - a user's saved property"""

    id: str = Field(default_factory=new_id)
    user_id: str
    property_id: str
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_invariants(self) -> "Favorite":
        _require_text(self.user_id, "user_id", "User ID")
        _require_text(self.property_id, "property_id", "Property ID")
        if self.notes is not None and len(self.notes) > 500:
            raise ValidationException("Notes cannot exceed 500 characters", field="notes")
        return self

    @classmethod
    def create(cls, user_id: str, property_id: str, notes: Optional[str] = None) -> "Favorite":
        return _build(cls, dict(user_id=user_id, property_id=property_id, notes=notes))

    @classmethod
    def reconstitute(cls, **fields) -> "Favorite":
        return _build(cls, fields)

    def update_notes(self, notes: Optional[str]) -> None:
        if notes is not None and len(notes) > 500:
            raise ValidationException("Notes cannot exceed 500 characters", field="notes")
        self.notes = notes
        self.updated_at = utc_now()
