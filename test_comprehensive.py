#!/usr/bin/env python3
"""
Comprehensive Unit Testing for Rental Booking API
Tests all layers: Domain, Application, Infrastructure, and API
"""

import asyncio
import pytest
from fastapi.testclient import TestClient
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

from sqlalchemy.exc import OperationalError, SQLAlchemyError

# Import all modules to test
from main import create_app
from domain.entities import (
    Booking, Favorite, Property, User, BOOKING_TRANSITIONS, MAX_DAYS_IN_ADVANCE, MAX_GUEST_COUNT,
    PROPERTY_TRANSITIONS, REFUND_SCHEDULE,
)
from domain.value_objects import Address, Amenity, DateRange, Email, Money, PhoneNumber, PropertyRules
from domain.enums import (
    BookingStatus, CancellationPolicy, CancelledBy, PropertyStatus, PropertyType,
    UserRole, UserStatus, VerificationStatus,
)
from domain.exceptions import (
    BusinessRuleViolationError, CurrencyMismatchError, DuplicateEmailError, DuplicateFavoriteError,
    EntityNotFoundError, ForbiddenActionError, InvalidAddressError, InvalidDateRangeError,
    InvalidEmailError, InvalidGuestCountError, InvalidMoneyError, InvalidPhoneNumberError,
    InvalidStatusTransitionError, PersistenceError, PropertyNotAvailableError,
    PropertyNotBookableError, TransientPersistenceError, ValidationException,
)
from domain.repositories import BookingRepository, PropertyRepository, PropertySearchCriteria
from application.services import BookingService
from infrastructure.config import Settings
from infrastructure.container import Container
from infrastructure.mappers.base import ensure_exhaustive
from infrastructure.mappers.booking_mapper import BookingMapper
from infrastructure.mappers.property_mapper import PropertyMapper
from infrastructure.mappers.user_mapper import UserMapper, VERIFICATION_FLAGS
from infrastructure.persistence.models import (
    BookingStatusColumn, CancellationPolicyColumn, PropertyModel, PropertyStatusColumn,
)
from infrastructure.repositories.base import SQLAlchemyRepository


TODAY = date.today()


def days_from_today(days: int) -> date:
    return TODAY + timedelta(days=days)


def stay(start_in: int, nights: int) -> DateRange:
    return DateRange.create(days_from_today(start_in), days_from_today(start_in + nights))


def make_property(**overrides) -> Property:
    fields = dict(
        host_id="host-1",
        title="Sea View Flat",
        address=Address(street="1 Corniche St", city="Doha", country="Qatar"),
        base_price=Money(amount=Decimal("100")),
        max_guests=4,
        images=["https://img.example.com/1.jpg"],
    )
    fields.update(overrides)
    return Property.create(**fields)


def make_booking(start_in: int = 10, nights: int = 3, policy=CancellationPolicy.MODERATE, **overrides) -> Booking:
    fields = dict(
        property_id="prop-1",
        guest_id="guest-1",
        host_id="host-1",
        date_range=stay(start_in, nights),
        price_per_night=Money(amount=Decimal("100")),
        guest_count=2,
        cancellation_policy=policy,
    )
    fields.update(overrides)
    return Booking.create(**fields)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite file"""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/rentals.db",
        DB_CREATE_SCHEMA=True,
        DB_QUERY_TIMEOUT=10.0,
    )


@pytest.fixture
async def container(settings):
    container = Container(settings)
    await container.init_schema()
    yield container
    await container.dispose()


@pytest.fixture
def booking_service(container):
    return container.get_booking_service()


@pytest.fixture
def property_service(container):
    return container.get_property_service()


@pytest.fixture
def user_service(container):
    return container.get_user_service()


@pytest.fixture
def favorite_service(container):
    return container.get_favorite_service()


@pytest.fixture
async def published_property(property_service):
    """A bookable listing: 100 QAR per night, up to 4 guests"""
    property = await property_service.create_property(
        host_id="host-1",
        title="Sea View Flat",
        address={"street": "1 Corniche St", "city": "Doha", "country": "Qatar"},
        base_price=Decimal("100"),
        max_guests=4,
        images=["https://img.example.com/1.jpg"],
    )
    return await property_service.publish_property(property.id, actor_id="host-1")


@pytest.fixture
def client(settings):
    """FastAPI test client running the full lifespan against SQLite"""
    with TestClient(create_app(settings)) as client:
        yield client


# ============================================================================
# DOMAIN LAYER TESTS - VALUE OBJECTS
# ============================================================================

class TestValueObjects:
    """Test domain value objects"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_date_range_counts_nights(self):
        """Test DateRange counts nights with the checkout day excluded"""
        date_range = stay(5, 3)
        assert date_range.number_of_nights == 3
        assert list(date_range.nights()) == [days_from_today(5), days_from_today(6), days_from_today(7)]

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_date_range_same_day_rejected(self):
        """Test DateRange rejects a zero-night stay"""
        with pytest.raises(InvalidDateRangeError):
            DateRange.create(TODAY, TODAY)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_date_range_end_before_start_rejected(self):
        """Test DateRange rejects end before start"""
        with pytest.raises(InvalidDateRangeError, match="End date must be after start date"):
            DateRange(start_date=days_from_today(3), end_date=days_from_today(1))

    @pytest.mark.unit
    @pytest.mark.domain
    def test_date_range_malformed_input(self):
        """Test unparseable dates surface as InvalidDateRangeError"""
        with pytest.raises(InvalidDateRangeError):
            DateRange.create("not-a-date", "2030-01-05")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_date_range_accepts_iso_strings_and_datetimes(self):
        """Test DateRange truncates datetimes and parses ISO strings"""
        date_range = DateRange.create(datetime(2030, 1, 1, 18, 30), "2030-01-04")
        assert date_range.start_date == date(2030, 1, 1)
        assert date_range.number_of_nights == 3

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_touching_ranges_do_not_overlap(self):
        """Test a stay may start on another stay's checkout day"""
        first = stay(5, 3)
        second = DateRange.create(first.end_date, first.end_date + timedelta(days=2))
        assert not first.overlaps(second)
        assert not second.overlaps(first)
        assert not first.contains(first.end_date)
        assert first.contains(first.start_date)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_overlapping_ranges(self):
        """Test ranges sharing a night overlap in both directions"""
        first = stay(5, 3)
        second = stay(7, 3)
        assert first.overlaps(second)
        assert second.overlaps(first)
        assert stay(0, 30).contains_range(first)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_date_range_relative_to_today(self):
        """Test past/current/future checks against an explicit day"""
        date_range = stay(5, 3)
        assert date_range.is_in_future(TODAY)
        assert date_range.is_current(days_from_today(6))
        assert date_range.is_in_past(days_from_today(8))
        assert not date_range.is_current(days_from_today(8))

    @pytest.mark.unit
    @pytest.mark.domain
    def test_money_rounds_half_up(self):
        """Test Money keeps two decimals, rounding half up"""
        assert Money.create("10.005").amount == Decimal("10.01")
        assert Money.create("1.234").amount == Decimal("1.23")
        assert Money.create(7).amount == Decimal("7.00")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_money_default_currency(self):
        """Test Money defaults to QAR and normalizes codes"""
        assert Money.create("5").currency == "QAR"
        assert Money.create("5", "usd").currency == "USD"

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_money_invalid_values(self):
        """Test Money rejects negatives, non-numbers and bad currency codes"""
        with pytest.raises(InvalidMoneyError):
            Money.create("-1")
        with pytest.raises(InvalidMoneyError):
            Money.create("abc")
        with pytest.raises(InvalidMoneyError):
            Money.create("NaN")
        with pytest.raises(InvalidMoneyError):
            Money.create("1", "DOLLARS")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_money_zero_is_allowed(self):
        """Test zero is a valid amount"""
        assert Money.zero().is_zero()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_money_arithmetic(self):
        """Test add, subtract, multiply and percentage"""
        price = Money.create("100")
        assert price.add(Money.create("20.50")).amount == Decimal("120.50")
        assert price.subtract(Money.create("0.01")).amount == Decimal("99.99")
        assert price.multiply(3).amount == Decimal("300.00")
        assert price.percentage(50).amount == Decimal("50.00")
        assert price.greater_than(Money.create("99"))
        assert price.less_than(Money.create("101"))

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_money_currency_mismatch(self):
        """Test arithmetic across currencies fails"""
        with pytest.raises(CurrencyMismatchError):
            Money.create("1", "QAR").add(Money.create("1", "USD"))
        with pytest.raises(CurrencyMismatchError):
            Money.create("1", "QAR").greater_than(Money.create("1", "EUR"))

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_money_subtract_below_zero(self):
        """Test subtraction may not go negative"""
        with pytest.raises(InvalidMoneyError):
            Money.create("1").subtract(Money.create("2"))

    @pytest.mark.unit
    @pytest.mark.domain
    def test_address_format(self):
        """Test Address formatting and required parts"""
        address = Address.create(street=" 1 Corniche St ", city="Doha", country="Qatar")
        assert address.street == "1 Corniche St"
        assert address.format() == "1 Corniche St, Doha, Qatar"
        assert address.format("short") == "Doha, Qatar"
        with pytest.raises(InvalidAddressError):
            Address.create(street="1 Corniche St", city="", country="Qatar")

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_address_coordinates_must_pair(self):
        """Test latitude without longitude is rejected"""
        with pytest.raises(InvalidAddressError):
            Address.create(street="1 Corniche St", city="Doha", country="Qatar", latitude=25.3)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_email_normalized(self):
        """Test Email lower-cases and validates"""
        assert Email.create(" Guest@Example.COM ").value == "guest@example.com"
        with pytest.raises(InvalidEmailError):
            Email.create("not-an-email")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_phone_number(self):
        """Test PhoneNumber strips formatting and renders E.164"""
        phone = PhoneNumber.create("5555-1234", "+974")
        assert phone.e164 == "+97455551234"
        with pytest.raises(InvalidPhoneNumberError):
            PhoneNumber.create("12", "974")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_property_rules_time_format(self):
        """Test house rule times must be HH:MM"""
        assert PropertyRules().check_in_time == "15:00"
        with pytest.raises(ValidationException):
            PropertyRules(check_in_time="3pm")


# ============================================================================
# DOMAIN LAYER TESTS - BOOKING ENTITY
# ============================================================================

class TestBookingEntity:
    """Test Booking aggregate"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_create_booking(self):
        """Test a new booking is PENDING and priced per night"""
        booking = make_booking(nights=3)
        assert booking.status == BookingStatus.PENDING
        assert booking.total_price == Money.create("300")
        assert booking.number_of_nights == 3
        assert booking.blocks_calendar()

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_guest_count_bounds(self):
        """Test guest count must be between 1 and the global cap"""
        with pytest.raises(InvalidGuestCountError):
            make_booking(guest_count=0)
        with pytest.raises(InvalidGuestCountError) as exc_info:
            make_booking(guest_count=MAX_GUEST_COUNT + 1)
        assert exc_info.value.details["maximum"] == MAX_GUEST_COUNT
        assert make_booking(guest_count=MAX_GUEST_COUNT).guest_count == MAX_GUEST_COUNT

    @pytest.mark.unit
    @pytest.mark.domain
    def test_missing_ids_rejected(self):
        """Test blank references are rejected"""
        with pytest.raises(ValidationException):
            make_booking(guest_id=" ")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_confirm_then_complete(self):
        """Test the happy lifecycle PENDING -> CONFIRMED -> COMPLETED"""
        booking = make_booking()
        booking.confirm()
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.confirmed_at is not None
        booking.complete(booking.date_range.end_date)
        assert booking.status == BookingStatus.COMPLETED
        assert booking.blocks_calendar()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_cancel_pending(self):
        """Test cancelling records reason and time and frees the calendar"""
        booking = make_booking()
        booking.cancel("Plans changed")
        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == "Plans changed"
        assert booking.cancelled_at is not None
        assert not booking.blocks_calendar()
        assert not booking.is_active()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_reject_pending(self):
        """Test host rejection of a pending booking"""
        booking = make_booking()
        booking.reject("Maintenance")
        assert booking.status == BookingStatus.REJECTED
        assert not booking.blocks_calendar()

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    @pytest.mark.parametrize("source", list(BookingStatus))
    def test_every_illegal_transition_raises(self, source):
        """Test each edge missing from the transition table is refused"""
        for target in BookingStatus:
            if target in BOOKING_TRANSITIONS[source]:
                continue
            booking = make_booking()
            booking.status = source
            action = {
                BookingStatus.CONFIRMED: booking.confirm,
                BookingStatus.CANCELLED: booking.cancel,
                BookingStatus.COMPLETED: booking.complete,
                BookingStatus.REJECTED: booking.reject,
            }.get(target)
            if action is None:
                continue
            with pytest.raises(InvalidStatusTransitionError):
                action()
            assert booking.status == source

    @pytest.mark.unit
    @pytest.mark.domain
    def test_can_be_cancelled(self):
        """Test only pending and confirmed bookings are cancellable"""
        booking = make_booking()
        assert booking.can_be_cancelled()
        booking.confirm()
        assert booking.can_be_cancelled()
        booking.complete(booking.date_range.end_date)
        assert not booking.can_be_cancelled()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_overlaps_requires_same_property_and_blocking(self):
        """Test booking overlap ignores other properties and cancelled bookings"""
        first = make_booking(start_in=10, nights=3)
        second = make_booking(start_in=11, nights=3)
        elsewhere = make_booking(start_in=11, nights=3, property_id="prop-2")
        assert first.overlaps(second)
        assert not first.overlaps(elsewhere)
        second.cancel()
        assert not first.overlaps(second)

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.parametrize("policy, days_before, percentage", [
        (CancellationPolicy.FLEXIBLE, 1, 100),
        (CancellationPolicy.FLEXIBLE, 0, 0),
        (CancellationPolicy.MODERATE, 5, 100),
        (CancellationPolicy.MODERATE, 4, 50),
        (CancellationPolicy.MODERATE, 1, 50),
        (CancellationPolicy.MODERATE, 0, 0),
        (CancellationPolicy.FIXED, 14, 100),
        (CancellationPolicy.FIXED, 13, 50),
        (CancellationPolicy.FIXED, 7, 50),
        (CancellationPolicy.FIXED, 6, 0),
    ])
    def test_guest_refund_schedule(self, policy, days_before, percentage):
        """Test guest refunds follow the policy thresholds"""
        booking = make_booking(start_in=30, nights=3, policy=policy)
        quote = booking.calculate_refund(CancelledBy.GUEST, booking.date_range.start_date - timedelta(days=days_before))
        assert quote.percentage == percentage
        assert quote.refund == Money.create("300").percentage(percentage)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_host_cancellation_refunds_everything(self):
        """Test a host cancellation is always a full refund"""
        booking = make_booking(start_in=1, policy=CancellationPolicy.FIXED)
        quote = booking.calculate_refund(CancelledBy.HOST, booking.date_range.start_date)
        assert quote.percentage == 100
        assert quote.refund.amount == Decimal("300.00")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_upcoming_and_current(self):
        """Test upcoming/current classification"""
        booking = make_booking(start_in=2, nights=3)
        assert booking.is_upcoming(TODAY)
        assert not booking.is_current(days_from_today(3))
        booking.confirm()
        assert booking.is_current(days_from_today(3))

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    @pytest.mark.parametrize("start_in", [0, -1, -10])
    def test_create_requires_future_check_in(self, start_in):
        """Test check-in today or earlier is refused"""
        with pytest.raises(InvalidDateRangeError) as exc_info:
            make_booking(start_in=start_in)
        assert exc_info.value.details["field"] == "start_date"

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_create_caps_days_in_advance(self):
        """Test check-in may be at most MAX_DAYS_IN_ADVANCE days away"""
        assert make_booking(start_in=MAX_DAYS_IN_ADVANCE).date_range.start_date == days_from_today(MAX_DAYS_IN_ADVANCE)
        with pytest.raises(InvalidDateRangeError) as exc_info:
            make_booking(start_in=MAX_DAYS_IN_ADVANCE + 1)
        assert exc_info.value.details["max_days_in_advance"] == MAX_DAYS_IN_ADVANCE

    @pytest.mark.unit
    @pytest.mark.domain
    def test_create_measures_from_given_today(self):
        """Test the booking window is relative to the day passed in"""
        booking = make_booking(start_in=0, today=days_from_today(-1))
        assert booking.status == BookingStatus.PENDING
        with pytest.raises(InvalidDateRangeError):
            make_booking(start_in=10, today=days_from_today(10))

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_confirm_refused_once_stay_is_over(self):
        """Test a booking whose checkout day has passed cannot be confirmed"""
        booking = make_booking(start_in=10, nights=3)
        with pytest.raises(BusinessRuleViolationError) as exc_info:
            booking.confirm(days_from_today(13))
        assert exc_info.value.details["rule"] == "booking_not_past"
        assert booking.status == BookingStatus.PENDING
        assert booking.confirmed_at is None
        booking.confirm(days_from_today(12))
        assert booking.status == BookingStatus.CONFIRMED

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_complete_refused_before_checkout(self):
        """Test a stay can only be completed from its checkout day on"""
        booking = make_booking(start_in=10, nights=3)
        booking.confirm()
        for day in (TODAY, days_from_today(10), days_from_today(12)):
            with pytest.raises(BusinessRuleViolationError) as exc_info:
                booking.complete(day)
            assert exc_info.value.details["rule"] == "stay_ended_before_complete"
        assert booking.status == BookingStatus.CONFIRMED
        booking.complete(days_from_today(13))
        assert booking.status == BookingStatus.COMPLETED

    @pytest.mark.unit
    @pytest.mark.domain
    def test_status_checked_before_dates(self):
        """Test an illegal transition is reported as such whatever the day"""
        booking = make_booking(start_in=10, nights=3)
        booking.cancel()
        with pytest.raises(InvalidStatusTransitionError):
            booking.confirm(days_from_today(20))
        with pytest.raises(InvalidStatusTransitionError):
            booking.complete(days_from_today(20))

    @pytest.mark.unit
    @pytest.mark.domain
    def test_rule_tables_cover_every_member(self):
        """Test the transition and refund tables have a row for every member"""
        assert set(BOOKING_TRANSITIONS) == set(BookingStatus)
        assert set(PROPERTY_TRANSITIONS) == set(PropertyStatus)
        assert set(REFUND_SCHEDULE) == set(CancellationPolicy)


# ============================================================================
# DOMAIN LAYER TESTS - PROPERTY / USER / FAVORITE ENTITIES
# ============================================================================

class TestPropertyEntity:
    """Test Property aggregate"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_create_is_draft(self):
        """Test new listings start as drafts whatever is passed"""
        property = make_property(status=PropertyStatus.PUBLISHED)
        assert property.status == PropertyStatus.DRAFT
        assert not property.is_available_for_booking()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_publish_requires_image(self):
        """Test publishing without images is a business rule violation"""
        property = make_property(images=[])
        with pytest.raises(BusinessRuleViolationError):
            property.publish()
        property.add_image("https://img.example.com/2.jpg")
        property.publish()
        assert property.status == PropertyStatus.PUBLISHED
        assert property.published_at is not None

    @pytest.mark.unit
    @pytest.mark.domain
    def test_status_transitions(self):
        """Test publish, unlist, suspend and reinstate"""
        property = make_property()
        with pytest.raises(InvalidStatusTransitionError):
            property.unlist()
        property.publish()
        property.unlist()
        assert property.status == PropertyStatus.UNLISTED
        property.suspend("Complaints")
        assert property.suspension_reason == "Complaints"
        with pytest.raises(InvalidStatusTransitionError):
            property.publish()
        property.reinstate()
        assert property.status == PropertyStatus.DRAFT
        assert property.suspension_reason is None

    @pytest.mark.unit
    @pytest.mark.domain
    def test_invalid_listing(self):
        """Test listing invariants"""
        with pytest.raises(ValidationException):
            make_property(max_guests=0)
        with pytest.raises(ValidationException):
            make_property(minimum_stay=3, maximum_stay=2)
        with pytest.raises(CurrencyMismatchError):
            make_property(cleaning_fee=Money.create("10", "USD"))

    @pytest.mark.unit
    @pytest.mark.domain
    def test_update_details_is_all_or_nothing(self):
        """Test an invalid edit leaves the listing untouched"""
        property = make_property()
        with pytest.raises(ValidationException):
            property.update_details(title="New title", max_guests=0)
        assert property.title == "Sea View Flat"
        property.update_details(title="New title", max_guests=6)
        assert property.title == "New title"
        assert property.max_guests == 6

    @pytest.mark.unit
    @pytest.mark.domain
    def test_amenities_and_images(self):
        """Test amenity and image collections reject duplicates"""
        property = make_property()
        property.add_amenity(Amenity(id="wifi", name="Wi-Fi"))
        assert property.has_amenity("wifi")
        with pytest.raises(BusinessRuleViolationError):
            property.add_amenity(Amenity(id="wifi", name="Wi-Fi"))
        property.remove_amenity("wifi")
        assert not property.has_amenity("wifi")
        with pytest.raises(BusinessRuleViolationError):
            property.add_image("https://img.example.com/1.jpg")

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_published_keeps_last_image(self):
        """Test the last image of a published listing cannot be removed"""
        property = make_property()
        property.publish()
        with pytest.raises(BusinessRuleViolationError):
            property.remove_image("https://img.example.com/1.jpg")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_stay_limits_and_price(self):
        """Test minimum/maximum stay and price breakdown"""
        property = make_property(
            minimum_stay=2, maximum_stay=5, cleaning_fee=Money.create("25"),
        )
        with pytest.raises(InvalidDateRangeError):
            property.validate_stay(stay(3, 1))
        with pytest.raises(InvalidDateRangeError):
            property.validate_stay(stay(3, 6))
        breakdown = property.calculate_total_price(stay(3, 3), guest_count=2)
        assert breakdown.nights_price.amount == Decimal("300.00")
        assert breakdown.total_price.amount == Decimal("325.00")
        with pytest.raises(InvalidGuestCountError):
            property.calculate_total_price(stay(3, 3), guest_count=5)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_update_rules(self):
        """Test house rules are replaced as a whole value"""
        property = make_property()
        property.update_rules(pets_allowed=True)
        assert property.rules.pets_allowed
        assert property.rules.check_out_time == "11:00"


class TestUserEntity:
    """Test User aggregate"""

    @pytest.fixture
    def user(self):
        return User.create(email=Email.create("guest@example.com"), first_name="Amal", last_name="Haddad")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_new_user_is_guest(self, user):
        """Test every new user is an active, unverified guest"""
        assert user.roles == [UserRole.GUEST]
        assert user.is_active()
        assert user.can_book()
        assert user.full_name == "Amal Haddad"
        assert not user.is_verified()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_roles_keep_declaration_order(self, user):
        """Test roles are ordered GUEST, HOST, ADMIN however they are added"""
        user.add_role(UserRole.ADMIN)
        user.add_role(UserRole.HOST)
        assert user.roles == [UserRole.GUEST, UserRole.HOST, UserRole.ADMIN]
        with pytest.raises(BusinessRuleViolationError):
            user.add_role(UserRole.HOST)
        user.remove_role(UserRole.HOST)
        assert user.roles == [UserRole.GUEST, UserRole.ADMIN]

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_guest_role_is_permanent(self, user):
        """Test the GUEST role can neither be removed nor omitted"""
        with pytest.raises(BusinessRuleViolationError):
            user.remove_role(UserRole.GUEST)
        with pytest.raises(ValidationException):
            User.reconstitute(
                email=Email.create("host@example.com"), first_name="A", last_name="B", roles=[UserRole.HOST]
            )

    @pytest.mark.unit
    @pytest.mark.domain
    def test_verification_never_decreases(self, user):
        """Test a lower verification step leaves a higher level in place"""
        user.verify_id()
        user.verify_email()
        assert user.verification_status == VerificationStatus.ID_VERIFIED
        user.mark_fully_verified()
        assert user.verification_status == VerificationStatus.FULLY_VERIFIED

    @pytest.mark.unit
    @pytest.mark.domain
    def test_phone_verification_needs_phone(self, user):
        """Test phone verification requires a phone number"""
        with pytest.raises(BusinessRuleViolationError):
            user.verify_phone()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_account_status(self, user):
        """Test suspension and reactivation"""
        user.suspend("Chargeback")
        assert user.status == UserStatus.SUSPENDED
        assert not user.can_book()
        with pytest.raises(InvalidStatusTransitionError):
            user.suspend("Again")
        user.reactivate()
        assert user.is_active()


class TestFavoriteEntity:
    """Test Favorite entity"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_notes_limit(self):
        """Test notes are capped at 500 characters"""
        favorite = Favorite.create("user-1", "prop-1", "x" * 500)
        with pytest.raises(ValidationException):
            favorite.update_notes("x" * 501)
        with pytest.raises(ValidationException):
            Favorite.create("user-1", "prop-1", "x" * 501)


# ============================================================================
# INFRASTRUCTURE LAYER TESTS - MAPPERS
# ============================================================================

class TestMappers:
    """Test persistence mappers"""

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_booking_round_trip(self):
        """Test a booking survives to_persistence / to_domain"""
        booking = make_booking(policy=CancellationPolicy.FLEXIBLE)
        booking.confirm()
        restored = BookingMapper.to_domain(SimpleNamespace(**BookingMapper.to_persistence(booking)))
        assert restored.model_dump() == booking.model_dump()

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_booking_service_fee_split(self):
        """Test the stored subtotal and service fee add up to the total"""
        row = BookingMapper.to_persistence(make_booking(nights=3), Decimal("0.10"))
        assert row["service_fee"] == Decimal("30.00")
        assert row["subtotal"] == Decimal("270.00")
        assert row["subtotal"] + row["service_fee"] == row["total_price"]

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_fixed_policy_is_stored_as_strict(self):
        """Test FIXED maps to the STRICT storage value and back"""
        row = BookingMapper.to_persistence(make_booking(policy=CancellationPolicy.FIXED))
        assert row["cancellation_policy"] == CancellationPolicyColumn.STRICT
        assert BookingMapper.to_domain(SimpleNamespace(**row)).cancellation_policy == CancellationPolicy.FIXED

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    def test_missing_policy_reads_as_moderate(self):
        """Test rows without a stored policy come back MODERATE"""
        row = BookingMapper.to_persistence(make_booking(policy=CancellationPolicy.FLEXIBLE))
        row["cancellation_policy"] = None
        assert BookingMapper.to_domain(SimpleNamespace(**row)).cancellation_policy == CancellationPolicy.MODERATE

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_naive_timestamps_read_as_utc(self):
        """Test naive timestamps from storage are treated as UTC"""
        row = BookingMapper.to_persistence(make_booking())
        row["created_at"] = datetime(2030, 1, 1, 12, 0)
        restored = BookingMapper.to_domain(SimpleNamespace(**row))
        assert restored.created_at == datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_pending_review_reads_as_draft(self):
        """Test the storage-only PENDING_REVIEW status reads as DRAFT"""
        row = PropertyMapper.to_persistence(make_property())
        row["status"] = PropertyStatusColumn.PENDING_REVIEW
        assert PropertyMapper.to_domain(SimpleNamespace(**row)).status == PropertyStatus.DRAFT

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_property_round_trip(self):
        """Test a property with amenities and rules survives the mapper"""
        property = make_property(property_type=PropertyType.VILLA, cleaning_fee=Money.create("40"))
        property.add_amenity(Amenity(id="pool", name="Pool"))
        property.update_rules(pets_allowed=True)
        property.publish()
        row = PropertyMapper.to_persistence(property)
        assert row["is_active"] is True
        restored = PropertyMapper.to_domain(SimpleNamespace(**row))
        assert restored.model_dump() == property.model_dump()

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_user_flags(self):
        """Test roles and verification map onto storage flags"""
        user = User.create(
            email=Email.create("host@example.com"), first_name="Omar", last_name="Saleh",
            phone_number=PhoneNumber.create("55551234", "974"),
        )
        user.add_role(UserRole.HOST)
        user.verify_phone()
        row = UserMapper.to_persistence(user)
        assert row["is_host"] and not row["is_admin"]
        assert (row["email_verified"], row["phone_verified"], row["id_verified"], row["kyc_completed"]) == \
            VERIFICATION_FLAGS[VerificationStatus.PHONE_VERIFIED]
        restored = UserMapper.to_domain(SimpleNamespace(**row))
        assert restored.roles == [UserRole.GUEST, UserRole.HOST]
        assert restored.verification_status == VerificationStatus.PHONE_VERIFIED
        assert restored.phone_number == user.phone_number

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    def test_incomplete_translation_table_fails(self):
        """Test a translation table missing a member is refused"""
        with pytest.raises(RuntimeError, match="REJECTED"):
            ensure_exhaustive(
                {BookingStatusColumn.PENDING: BookingStatus.PENDING},
                BookingStatusColumn,
                BookingStatus,
            )

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    def test_incomplete_flag_table_fails(self):
        """Test a table keyed by an enum without a target enum still checks its keys"""
        with pytest.raises(RuntimeError, match="FULLY_VERIFIED"):
            ensure_exhaustive({VerificationStatus.UNVERIFIED: (False, False, False, False)}, VerificationStatus)
        assert ensure_exhaustive(VERIFICATION_FLAGS, VerificationStatus) is VERIFICATION_FLAGS


# ============================================================================
# INFRASTRUCTURE LAYER TESTS - REPOSITORIES
# ============================================================================

class TestRepositoryErrors:
    """Test error translation and retry in the repository base"""

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_transient_failure_retried_once(self):
        """Test a dropped connection is retried and the second attempt wins"""
        repository = SQLAlchemyRepository(Mock())
        repository._in_transaction = AsyncMock(side_effect=[
            OperationalError("SELECT 1", {}, Exception("connection reset")),
            "ok",
        ])
        assert await repository._run("lookup", Mock()) == "ok"
        assert repository._in_transaction.await_count == 2

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_transient_failure_gives_up(self):
        """Test a second transient failure is raised as TransientPersistenceError"""
        repository = SQLAlchemyRepository(Mock())
        repository._in_transaction = AsyncMock(
            side_effect=OperationalError("SELECT 1", {}, Exception("connection reset"))
        )
        with pytest.raises(TransientPersistenceError):
            await repository._run("lookup", Mock())
        assert repository._in_transaction.await_count == 2

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_timeout_is_transient(self):
        """Test a call exceeding the query timeout is retried, then reported"""
        attempts = []

        async def slow(work):
            attempts.append(work)
            await asyncio.sleep(1)

        repository = SQLAlchemyRepository(Mock(), query_timeout=0.01)
        repository._in_transaction = slow
        with pytest.raises(TransientPersistenceError):
            await repository._run("lookup", Mock())
        assert len(attempts) == 2

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_other_storage_errors_not_retried(self):
        """Test non-transient failures become PersistenceError at once"""
        repository = SQLAlchemyRepository(Mock())
        repository._in_transaction = AsyncMock(side_effect=SQLAlchemyError("constraint"))
        with pytest.raises(PersistenceError) as exc_info:
            await repository._run("lookup", Mock())
        assert not isinstance(exc_info.value, TransientPersistenceError)
        assert repository._in_transaction.await_count == 1

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_domain_errors_pass_through(self):
        """Test domain exceptions raised inside a unit of work are not wrapped"""
        repository = SQLAlchemyRepository(Mock())
        repository._in_transaction = AsyncMock(side_effect=EntityNotFoundError("Booking", "b-1"))
        with pytest.raises(EntityNotFoundError):
            await repository._run("lookup", Mock())


class TestBookingRepository:
    """Test SQLAlchemyBookingRepository against SQLite"""

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_round_trip(self, container, published_property):
        """Test a stored booking reads back unchanged"""
        repository = container.get_booking_repository()
        booking = make_booking(property_id=published_property.id, host_id=published_property.host_id)
        await repository.create(booking)
        stored = await repository.find_by_id(booking.id)
        assert stored.model_dump() == booking.model_dump()

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_overlap_rejected_inside_transaction(self, container, published_property):
        """Test the repository refuses a clash even without the service pre-check"""
        repository = container.get_booking_repository()
        await repository.create(make_booking(start_in=10, nights=3, property_id=published_property.id))
        with pytest.raises(PropertyNotAvailableError):
            await repository.create(make_booking(start_in=12, nights=3, property_id=published_property.id))
        assert await repository.count_by_property_id(published_property.id) == 1

    @pytest.mark.integration
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_checkout_day_is_bookable(self, container, published_property):
        """Test a booking may start on the previous booking's checkout day"""
        repository = container.get_booking_repository()
        first = make_booking(start_in=10, nights=3, property_id=published_property.id)
        await repository.create(first)
        second = make_booking(start_in=13, nights=2, property_id=published_property.id)
        await repository.create(second)
        assert await repository.is_property_available(published_property.id, stay(15, 1))
        assert not await repository.is_property_available(published_property.id, stay(12, 1))

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_find_overlapping(self, container, published_property):
        """Test overlapping lookup returns only blocking bookings"""
        repository = container.get_booking_repository()
        booking = make_booking(start_in=10, nights=3, property_id=published_property.id)
        await repository.create(booking)
        overlapping = await repository.find_overlapping_bookings(published_property.id, stay(12, 5))
        assert [b.id for b in overlapping] == [booking.id]
        assert await repository.find_overlapping_bookings(
            published_property.id, stay(12, 5), exclude_booking_id=booking.id
        ) == []

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_soft_deleted_booking_hidden(self, container, published_property):
        """Test soft-deleted bookings disappear from reads and free their nights"""
        repository = container.get_booking_repository()
        booking = make_booking(property_id=published_property.id)
        await repository.create(booking)
        assert await repository.count_by_property_id(published_property.id) == 1
        assert await repository.delete(booking.id)

        assert await repository.find_by_id(booking.id) is None
        assert await repository.find_by_guest_id(booking.guest_id) == []
        assert await repository.find_by_host_id(booking.host_id) == []
        assert await repository.find_by_property_id(published_property.id) == []
        assert await repository.find_by_status(BookingStatus.PENDING) == []
        assert await repository.find_overlapping_bookings(published_property.id, booking.date_range) == []
        assert await repository.is_property_available(published_property.id, booking.date_range)
        assert await repository.count_by_property_id(published_property.id) == 0
        assert await repository.count_by_host_id(booking.host_id) == 0
        assert not await repository.delete(booking.id)

    @pytest.mark.integration
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_stale_status_write_refused(self, container, published_property):
        """Test a transition computed from an outdated status does not overwrite a newer one"""
        repository = container.get_booking_repository()
        booking = make_booking(property_id=published_property.id)
        await repository.create(booking)
        guest_copy = await repository.find_by_id(booking.id)
        host_copy = await repository.find_by_id(booking.id)

        guest_copy.cancel("Plans changed")
        await repository.update(guest_copy, expected_status=BookingStatus.PENDING)
        host_copy.confirm()
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await repository.update(host_copy, expected_status=BookingStatus.PENDING)
        assert exc_info.value.details["current"] == "CANCELLED"
        assert exc_info.value.details["target"] == "CONFIRMED"

        stored = await repository.find_by_id(booking.id)
        assert stored.status == BookingStatus.CANCELLED
        assert stored.cancelled_at is not None
        assert stored.confirmed_at is None
        assert await repository.is_property_available(published_property.id, booking.date_range)

    @pytest.mark.integration
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_create_retried_after_commit_is_not_duplicated(self, container, published_property):
        """Test a create whose commit landed before a timeout succeeds on the retry"""
        repository = container.get_booking_repository()
        booking = make_booking(property_id=published_property.id)
        commit = repository._in_transaction
        attempts = []

        async def commit_then_time_out(work):
            attempts.append(work)
            result = await commit(work)
            if len(attempts) == 1:
                raise asyncio.TimeoutError()
            return result

        repository._in_transaction = commit_then_time_out
        created = await repository.create(booking)
        assert created.id == booking.id
        assert len(attempts) == 2
        assert await repository.count_by_property_id(published_property.id) == 1
        assert not await repository.is_property_available(published_property.id, booking.date_range)

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_update_missing_booking(self, container):
        """Test updating an unknown booking raises EntityNotFoundError"""
        with pytest.raises(EntityNotFoundError):
            await container.get_booking_repository().update(make_booking())


class TestPropertyRepository:
    """Test SQLAlchemyPropertyRepository against SQLite"""

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_round_trip(self, container):
        """Test a stored property reads back unchanged"""
        repository = container.get_property_repository()
        property = make_property(bathrooms=Decimal("1.5"))
        property.add_amenity(Amenity(id="wifi", name="Wi-Fi"))
        await repository.create(property)
        stored = await repository.find_by_id(property.id)
        assert stored.model_dump() == property.model_dump()

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_pending_review_found_as_draft(self, container):
        """Test rows stored as PENDING_REVIEW are listed with the drafts"""
        row = PropertyMapper.to_persistence(make_property())
        row["status"] = PropertyStatusColumn.PENDING_REVIEW
        async with container.session_factory() as session:
            async with session.begin():
                session.add(PropertyModel(**row))

        drafts = await container.get_property_repository().find_by_status(PropertyStatus.DRAFT)
        assert [p.id for p in drafts] == [row["id"]]

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_search_filters(self, container, property_service, published_property):
        """Test search by city, guests and free dates"""
        dubai = await property_service.create_property(
            host_id="host-2",
            title="Marina Loft",
            address={"street": "2 Marina Walk", "city": "Dubai", "country": "UAE"},
            base_price=Decimal("250"),
            max_guests=2,
            images=["https://img.example.com/2.jpg"],
        )
        await property_service.publish_property(dubai.id)

        found = await property_service.search_properties(PropertySearchCriteria(city="DOHA"))
        assert [p.id for p in found] == [published_property.id]
        found = await property_service.search_properties(PropertySearchCriteria(guest_count=3))
        assert [p.id for p in found] == [published_property.id]
        found = await property_service.search_properties(PropertySearchCriteria(max_price=Decimal("200")))
        assert [p.id for p in found] == [published_property.id]

        await container.get_booking_repository().create(make_booking(property_id=published_property.id))
        free = await property_service.find_available_properties(stay(11, 1))
        assert [p.id for p in free] == [dubai.id]

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_soft_delete(self, container):
        """Test deleted properties are hidden"""
        repository = container.get_property_repository()
        property = make_property()
        await repository.create(property)
        assert await repository.exists(property.id)
        assert await repository.delete(property.id)
        assert await repository.find_by_id(property.id) is None
        assert not await repository.exists(property.id)
        assert await repository.count() == 0


# ============================================================================
# APPLICATION LAYER TESTS - SERVICES
# ============================================================================

class TestBookingService:
    """Test BookingService business logic"""

    @pytest.mark.unit
    @pytest.mark.application
    async def test_create_booking_success(self, booking_service, published_property):
        """Test successfully creating a booking"""
        booking = await booking_service.create_booking(
            property_id=published_property.id,
            guest_id="guest-1",
            date_range=stay(10, 3),
            guest_count=2,
        )
        assert booking.status == BookingStatus.PENDING
        assert booking.host_id == "host-1"
        assert booking.total_price == Money.create("300")
        assert (await booking_service.get_booking(booking.id)).id == booking.id

    @pytest.mark.unit
    @pytest.mark.application
    @pytest.mark.edge_case
    async def test_guest_count_checked_before_booking_storage(self):
        """Test too many guests fails before the booking repository is touched"""
        property = make_property(max_guests=2)
        property.publish()
        property_repository = AsyncMock(spec=PropertyRepository)
        property_repository.find_by_id.return_value = property
        booking_repository = AsyncMock(spec=BookingRepository)
        service = BookingService(booking_repository, property_repository)

        with pytest.raises(InvalidGuestCountError) as exc_info:
            await service.create_booking(property.id, "guest-1", stay(10, 3), guest_count=3)
        assert exc_info.value.details["maximum"] == 2
        assert booking_repository.mock_calls == []

    @pytest.mark.unit
    @pytest.mark.application
    async def test_unknown_property(self, booking_service):
        """Test booking an unknown property raises EntityNotFoundError"""
        with pytest.raises(EntityNotFoundError):
            await booking_service.create_booking("missing", "guest-1", stay(10, 3), 2)

    @pytest.mark.unit
    @pytest.mark.application
    async def test_draft_property_not_bookable(self, booking_service, property_service):
        """Test booking a draft listing is refused"""
        draft = await property_service.create_property(
            host_id="host-1",
            title="Unfinished",
            address={"street": "3 Pearl Blvd", "city": "Doha", "country": "Qatar"},
            base_price=Decimal("90"),
            max_guests=2,
        )
        with pytest.raises(PropertyNotBookableError):
            await booking_service.create_booking(draft.id, "guest-1", stay(10, 3), 2)

    @pytest.mark.unit
    @pytest.mark.application
    async def test_overlapping_booking_rejected(self, booking_service, published_property):
        """Test a second booking over taken nights is refused"""
        await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        with pytest.raises(PropertyNotAvailableError):
            await booking_service.create_booking(published_property.id, "guest-2", stay(12, 2), 2)

    @pytest.mark.integration
    @pytest.mark.application
    @pytest.mark.edge_case
    async def test_concurrent_bookings_only_one_wins(self, booking_service, published_property):
        """Test simultaneous requests for the same nights produce exactly one booking"""
        results = await asyncio.gather(
            booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2),
            booking_service.create_booking(published_property.id, "guest-2", stay(11, 3), 2),
            return_exceptions=True,
        )
        created = [r for r in results if isinstance(r, Booking)]
        refused = [r for r in results if isinstance(r, PropertyNotAvailableError)]
        assert len(created) == 1
        assert len(refused) == 1
        assert len(await booking_service.find_bookings_for_property(published_property.id)) == 1

    @pytest.mark.unit
    @pytest.mark.application
    async def test_cancel_frees_nights(self, booking_service, published_property):
        """Test cancelled nights can be booked again"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        cancelled = await booking_service.cancel_booking(booking.id, "Plans changed", actor_id="guest-1")
        assert cancelled.status == BookingStatus.CANCELLED
        assert await booking_service.is_property_available(published_property.id, stay(10, 3))
        rebooked = await booking_service.create_booking(published_property.id, "guest-2", stay(10, 3), 2)
        assert rebooked.status == BookingStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.application
    async def test_reject_frees_nights(self, booking_service, published_property):
        """Test rejected nights can be booked again"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        await booking_service.reject_booking(booking.id, "Maintenance", actor_id="host-1")
        assert await booking_service.find_overlapping_bookings(published_property.id, stay(10, 3)) == []

    @pytest.mark.unit
    @pytest.mark.application
    async def test_only_host_confirms(self, booking_service, published_property):
        """Test confirm is limited to the owning host"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        with pytest.raises(ForbiddenActionError):
            await booking_service.confirm_booking(booking.id, actor_id="guest-1")
        confirmed = await booking_service.confirm_booking(booking.id, actor_id="host-1")
        assert confirmed.status == BookingStatus.CONFIRMED
        assert (await booking_service.get_booking(booking.id)).confirmed_at is not None

    @pytest.mark.unit
    @pytest.mark.application
    async def test_stranger_cannot_cancel(self, booking_service, published_property):
        """Test cancel is limited to the guest and the host"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        with pytest.raises(ForbiddenActionError):
            await booking_service.cancel_booking(booking.id, actor_id="someone-else")
        cancelled = await booking_service.cancel_booking(booking.id, "Maintenance", actor_id="host-1")
        assert cancelled.status == BookingStatus.CANCELLED

    @pytest.mark.unit
    @pytest.mark.application
    @pytest.mark.edge_case
    async def test_complete_pending_fails(self, booking_service, published_property):
        """Test completing an unconfirmed booking is an invalid transition"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        with pytest.raises(InvalidStatusTransitionError):
            await booking_service.complete_booking(booking.id)
        assert (await booking_service.get_booking(booking.id)).status == BookingStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.application
    async def test_complete_after_checkout(self, booking_service, published_property):
        """Test completion waits for the checkout day"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        await booking_service.confirm_booking(booking.id, actor_id="host-1")
        with pytest.raises(BusinessRuleViolationError):
            await booking_service.complete_booking(booking.id, today=days_from_today(12))
        assert (await booking_service.get_booking(booking.id)).status == BookingStatus.CONFIRMED
        completed = await booking_service.complete_booking(booking.id, today=days_from_today(13))
        assert completed.status == BookingStatus.COMPLETED

    @pytest.mark.unit
    @pytest.mark.application
    @pytest.mark.edge_case
    async def test_create_rejects_dates_outside_window(self, booking_service, published_property):
        """Test past check-ins and check-ins too far ahead are refused before storage"""
        with pytest.raises(InvalidDateRangeError):
            await booking_service.create_booking(published_property.id, "guest-1", stay(-2, 3), 2)
        with pytest.raises(InvalidDateRangeError):
            await booking_service.create_booking(
                published_property.id, "guest-1", stay(10, 3), 2, today=days_from_today(10)
            )
        with pytest.raises(InvalidDateRangeError):
            await booking_service.create_booking(
                published_property.id, "guest-1", stay(MAX_DAYS_IN_ADVANCE + 1, 3), 2
            )
        assert await booking_service.find_bookings_for_property(published_property.id) == []

    @pytest.mark.integration
    @pytest.mark.application
    @pytest.mark.edge_case
    async def test_concurrent_cancel_and_confirm(self, booking_service, published_property):
        """Test a guest cancel racing a host confirm leaves one consistent outcome"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        cancelled, confirmed = await asyncio.gather(
            booking_service.cancel_booking(booking.id, actor_id="guest-1"),
            booking_service.confirm_booking(booking.id, actor_id="host-1"),
            return_exceptions=True,
        )
        failures = [r for r in (cancelled, confirmed) if isinstance(r, Exception)]
        assert len(failures) <= 1
        assert all(isinstance(f, InvalidStatusTransitionError) for f in failures)

        stored = await booking_service.get_booking(booking.id)
        if isinstance(cancelled, Exception):
            assert confirmed.status == BookingStatus.CONFIRMED
            assert stored.status == BookingStatus.CONFIRMED
            assert stored.cancelled_at is None
        else:
            # either confirm lost, or it landed first and the guest cancelled the confirmed booking
            assert cancelled.status == BookingStatus.CANCELLED
            assert stored.status == BookingStatus.CANCELLED
            assert stored.cancelled_at is not None
        available = await booking_service.is_property_available(published_property.id, stay(10, 3))
        assert available == (stored.status == BookingStatus.CANCELLED)

    @pytest.mark.unit
    @pytest.mark.application
    async def test_quote_refund(self, booking_service, published_property):
        """Test refund quotes and their refusal after cancellation"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        quote = await booking_service.quote_refund(booking.id, CancelledBy.GUEST, days_from_today(7))
        assert quote.percentage == 50
        assert quote.refund.amount == Decimal("150.00")
        await booking_service.cancel_booking(booking.id)
        with pytest.raises(BusinessRuleViolationError):
            await booking_service.quote_refund(booking.id)

    @pytest.mark.unit
    @pytest.mark.application
    async def test_delete_requires_closed_booking(self, booking_service, published_property):
        """Test only cancelled or rejected bookings may be deleted"""
        booking = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        with pytest.raises(BusinessRuleViolationError):
            await booking_service.delete_booking(booking.id)
        await booking_service.cancel_booking(booking.id)
        assert await booking_service.delete_booking(booking.id)
        with pytest.raises(EntityNotFoundError):
            await booking_service.get_booking(booking.id)

    @pytest.mark.unit
    @pytest.mark.application
    async def test_guest_bookings_grouping(self, booking_service, published_property):
        """Test guest bookings are split into upcoming, current and past"""
        current = await booking_service.create_booking(published_property.id, "guest-1", stay(2, 3), 2)
        await booking_service.confirm_booking(current.id)
        upcoming = await booking_service.create_booking(published_property.id, "guest-1", stay(20, 3), 2)

        grouped = await booking_service.get_guest_bookings("guest-1", today=days_from_today(3))
        assert [b.id for b in grouped.current] == [current.id]
        assert [b.id for b in grouped.upcoming] == [upcoming.id]
        assert grouped.past == []

        later = await booking_service.get_guest_bookings("guest-1", today=days_from_today(30))
        assert [b.id for b in later.past] == [upcoming.id, current.id]
        assert later.upcoming == [] and later.current == []

    @pytest.mark.unit
    @pytest.mark.application
    async def test_host_views(self, booking_service, published_property):
        """Test pending list and statistics for a host"""
        first = await booking_service.create_booking(published_property.id, "guest-1", stay(10, 3), 2)
        second = await booking_service.create_booking(published_property.id, "guest-2", stay(20, 3), 2)
        await booking_service.confirm_booking(first.id)

        pending = await booking_service.find_pending_bookings_for_host("host-1")
        assert [b.id for b in pending] == [second.id]
        stats = await booking_service.get_host_statistics("host-1")
        assert stats.total_bookings == 2
        assert stats.pending_bookings == 1
        assert stats.confirmed_bookings == 1
        assert len(await booking_service.find_bookings_for_guest("guest-2")) == 1


class TestPropertyService:
    """Test PropertyService business logic"""

    @pytest.mark.unit
    @pytest.mark.application
    async def test_create_uses_default_currency(self, property_service):
        """Test listings without a currency are priced in the default currency"""
        property = await property_service.create_property(
            host_id="host-1",
            title="Studio",
            address={"street": "4 Souq Rd", "city": "Doha", "country": "Qatar"},
            base_price=Decimal("80"),
            max_guests=2,
            cleaning_fee=Decimal("15"),
            property_type=PropertyType.STUDIO,
        )
        assert property.status == PropertyStatus.DRAFT
        assert property.base_price.currency == "QAR"
        assert property.cleaning_fee == Money.create("15")
        assert [p.id for p in await property_service.get_host_properties("host-1")] == [property.id]

    @pytest.mark.unit
    @pytest.mark.application
    async def test_unlist_by_other_host_forbidden(self, property_service, published_property):
        """Test only the owner may unlist a listing"""
        with pytest.raises(ForbiddenActionError):
            await property_service.unlist_property(published_property.id, actor_id="host-2")
        unlisted = await property_service.unlist_property(published_property.id, actor_id="host-1")
        assert unlisted.status == PropertyStatus.UNLISTED

    @pytest.mark.unit
    @pytest.mark.application
    async def test_suspend(self, property_service, published_property):
        """Test suspension persists reason and status"""
        await property_service.suspend_property(published_property.id, "Complaints")
        stored = await property_service.get_property(published_property.id)
        assert stored.status == PropertyStatus.SUSPENDED
        assert stored.suspension_reason == "Complaints"

    @pytest.mark.unit
    @pytest.mark.application
    async def test_get_missing_property(self, property_service):
        """Test unknown property raises EntityNotFoundError"""
        with pytest.raises(EntityNotFoundError):
            await property_service.get_property("missing")


class TestUserService:
    """Test UserService business logic"""

    @pytest.mark.unit
    @pytest.mark.application
    async def test_register_and_promote(self, user_service):
        """Test registration and promotion to host persist"""
        user = await user_service.register_user(
            "Host@Example.com", "Omar", "Saleh", phone_number="5555 1234", country_code="974"
        )
        assert user.email.value == "host@example.com"
        await user_service.promote_to_host(user.id)
        stored = await user_service.get_user(user.id)
        assert stored.roles == [UserRole.GUEST, UserRole.HOST]
        assert stored.phone_number.e164 == "+97455551234"

    @pytest.mark.unit
    @pytest.mark.application
    @pytest.mark.edge_case
    async def test_duplicate_email(self, user_service):
        """Test e-mail addresses are unique regardless of case"""
        await user_service.register_user("guest@example.com", "Amal", "Haddad")
        with pytest.raises(DuplicateEmailError):
            await user_service.register_user("GUEST@example.com", "Other", "Person")

    @pytest.mark.unit
    @pytest.mark.application
    async def test_suspend_user(self, user_service):
        """Test suspension persists"""
        user = await user_service.register_user("guest@example.com", "Amal", "Haddad")
        await user_service.suspend_user(user.id, "Chargeback")
        assert (await user_service.get_user(user.id)).status == UserStatus.SUSPENDED


class TestFavoriteService:
    """Test FavoriteService business logic"""

    @pytest.mark.unit
    @pytest.mark.application
    async def test_add_and_duplicate(self, favorite_service, published_property):
        """Test a property can be saved once per user"""
        await favorite_service.add_favorite("user-1", published_property.id, "Anniversary trip")
        assert await favorite_service.is_favorite("user-1", published_property.id)
        with pytest.raises(DuplicateFavoriteError):
            await favorite_service.add_favorite("user-1", published_property.id)

    @pytest.mark.unit
    @pytest.mark.application
    async def test_unknown_property(self, favorite_service):
        """Test saving an unknown property fails"""
        with pytest.raises(EntityNotFoundError):
            await favorite_service.add_favorite("user-1", "missing")

    @pytest.mark.unit
    @pytest.mark.application
    async def test_toggle_and_readd(self, favorite_service, published_property):
        """Test toggling removes and re-adds after a soft delete"""
        assert await favorite_service.toggle_favorite("user-1", published_property.id) is True
        assert await favorite_service.toggle_favorite("user-1", published_property.id) is False
        assert await favorite_service.list_favorites("user-1") == []
        assert await favorite_service.toggle_favorite("user-1", published_property.id) is True
        assert len(await favorite_service.list_favorites("user-1")) == 1

    @pytest.mark.unit
    @pytest.mark.application
    async def test_update_notes(self, favorite_service, published_property):
        """Test notes can be edited"""
        await favorite_service.add_favorite("user-1", published_property.id)
        updated = await favorite_service.update_notes("user-1", published_property.id, "Near the beach")
        assert updated.notes == "Near the beach"
        with pytest.raises(EntityNotFoundError):
            await favorite_service.update_notes("user-2", published_property.id, "x")


# ============================================================================
# API LAYER TESTS
# ============================================================================

def create_published_property(client, host_id="host-1", **overrides):
    body = {
        "title": "Sea View Flat",
        "address": {"street": "1 Corniche St", "city": "Doha", "country": "Qatar"},
        "base_price": "100.00",
        "max_guests": 4,
        "images": ["https://img.example.com/1.jpg"],
    }
    body.update(overrides)
    response = client.post("/api/properties", json=body, headers={"X-User-Id": host_id})
    assert response.status_code == 201
    property_id = response.json()["id"]
    response = client.post(f"/api/properties/{property_id}/publish", headers={"X-User-Id": host_id})
    assert response.status_code == 200
    return property_id


def request_booking(client, property_id, start_in=10, nights=3, guest_id="guest-1", guest_count=2):
    return client.post(
        "/api/bookings",
        json={
            "property_id": property_id,
            "start_date": days_from_today(start_in).isoformat(),
            "end_date": days_from_today(start_in + nights).isoformat(),
            "guest_count": guest_count,
        },
        headers={"X-User-Id": guest_id},
    )


class TestHealthAPI:
    """Test health endpoint"""

    @pytest.mark.api
    def test_health(self, client):
        """Test health check endpoint"""
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestPropertyAPI:
    """Test property endpoints"""

    @pytest.mark.api
    def test_create_and_publish(self, client):
        """Test creating and publishing a listing"""
        property_id = create_published_property(client)
        response = client.get(f"/api/properties/{property_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "PUBLISHED"
        assert data["host_id"] == "host-1"
        assert data["base_price"] == {"amount": "100.00", "currency": "QAR"}

    @pytest.mark.api
    def test_publish_without_image(self, client):
        """Test publishing without images is 422"""
        response = client.post(
            "/api/properties",
            json={
                "title": "Bare",
                "address": {"street": "1 Corniche St", "city": "Doha", "country": "Qatar"},
                "base_price": "100",
                "max_guests": 2,
            },
            headers={"X-User-Id": "host-1"},
        )
        property_id = response.json()["id"]
        response = client.post(f"/api/properties/{property_id}/publish", headers={"X-User-Id": "host-1"})
        assert response.status_code == 422
        assert response.json()["error"] == "BUSINESS_RULE_VIOLATION"

    @pytest.mark.api
    @pytest.mark.edge_case
    def test_invalid_address(self, client):
        """Test a blank city is a 400 validation error"""
        response = client.post(
            "/api/properties",
            json={
                "title": "Nowhere",
                "address": {"street": "1 Corniche St", "city": " ", "country": "Qatar"},
                "base_price": "100",
                "max_guests": 2,
            },
            headers={"X-User-Id": "host-1"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_ADDRESS"

    @pytest.mark.api
    def test_missing_property(self, client):
        """Test unknown property is 404"""
        response = client.get("/api/properties/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "ENTITY_NOT_FOUND"

    @pytest.mark.api
    def test_availability(self, client):
        """Test availability before and after a booking"""
        property_id = create_published_property(client)
        params = {"start_date": days_from_today(11).isoformat(), "end_date": days_from_today(12).isoformat()}
        assert client.get(f"/api/properties/{property_id}/availability", params=params).json()["available"]
        request_booking(client, property_id, start_in=10, nights=3)
        assert not client.get(f"/api/properties/{property_id}/availability", params=params).json()["available"]

        params = {"start_date": days_from_today(13).isoformat(), "end_date": days_from_today(14).isoformat()}
        assert client.get(f"/api/properties/{property_id}/availability", params=params).json()["available"]


class TestBookingAPI:
    """Test booking endpoints"""

    @pytest.mark.api
    def test_create_booking(self, client):
        """Test booking request returns a pending booking"""
        property_id = create_published_property(client)
        response = request_booking(client, property_id)
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["guest_id"] == "guest-1"
        assert data["number_of_nights"] == 3
        assert data["total_price"] == {"amount": "300.00", "currency": "QAR"}
        assert data["cancellation_policy"] == "MODERATE"

    @pytest.mark.api
    def test_create_booking_requires_actor(self, client):
        """Test booking without X-User-Id is 401"""
        property_id = create_published_property(client)
        response = client.post(
            "/api/bookings",
            json={
                "property_id": property_id,
                "start_date": days_from_today(10).isoformat(),
                "end_date": days_from_today(13).isoformat(),
                "guest_count": 2,
            },
        )
        assert response.status_code == 401

    @pytest.mark.api
    @pytest.mark.edge_case
    def test_create_booking_errors(self, client):
        """Test error statuses for bad booking requests"""
        property_id = create_published_property(client)

        response = request_booking(client, property_id, guest_count=5)
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_GUEST_COUNT"

        response = request_booking(client, "missing")
        assert response.status_code == 404

        response = request_booking(client, property_id, nights=0)
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_DATE_RANGE"

        response = client.post("/api/bookings", json={"property_id": property_id}, headers={"X-User-Id": "g"})
        assert response.status_code == 422
        assert response.json()["error"] == "REQUEST_VALIDATION_ERROR"

    @pytest.mark.api
    def test_overlap_is_conflict(self, client):
        """Test a clashing booking is 409"""
        property_id = create_published_property(client)
        assert request_booking(client, property_id).status_code == 201
        response = request_booking(client, property_id, start_in=12, guest_id="guest-2")
        assert response.status_code == 409
        assert response.json()["error"] == "PROPERTY_NOT_AVAILABLE"

    @pytest.mark.api
    def test_confirm_flow(self, client):
        """Test host confirmation and ownership check"""
        property_id = create_published_property(client)
        booking_id = request_booking(client, property_id).json()["id"]

        response = client.post(f"/api/bookings/{booking_id}/confirm", headers={"X-User-Id": "guest-1"})
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN_ACTION"

        response = client.post(f"/api/bookings/{booking_id}/confirm", headers={"X-User-Id": "host-1"})
        assert response.status_code == 200
        assert response.json()["status"] == "CONFIRMED"

        response = client.post(f"/api/bookings/{booking_id}/confirm", headers={"X-User-Id": "host-1"})
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATUS_TRANSITION"

    @pytest.mark.api
    def test_cancel_refund_and_delete(self, client):
        """Test refund quote, cancellation and deletion"""
        property_id = create_published_property(client)
        booking_id = request_booking(client, property_id).json()["id"]

        response = client.get(
            f"/api/bookings/{booking_id}/refund-quote",
            params={"on_date": days_from_today(7).isoformat()},
        )
        assert response.status_code == 200
        assert response.json()["percentage"] == 50
        assert response.json()["refund"]["amount"] == "150.00"

        assert client.delete(f"/api/bookings/{booking_id}").status_code == 422

        response = client.post(
            f"/api/bookings/{booking_id}/cancel",
            json={"reason": "Plans changed"},
            headers={"X-User-Id": "guest-1"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"
        assert response.json()["cancellation_reason"] == "Plans changed"

        assert request_booking(client, property_id, guest_id="guest-2").status_code == 201

        assert client.delete(f"/api/bookings/{booking_id}").status_code == 204
        assert client.get(f"/api/bookings/{booking_id}").status_code == 404

    @pytest.mark.api
    def test_reject_and_complete(self, client):
        """Test rejection, and completion of a confirmed booking"""
        property_id = create_published_property(client)
        first = request_booking(client, property_id).json()["id"]
        second = request_booking(client, property_id, start_in=20).json()["id"]

        response = client.post(
            f"/api/bookings/{first}/reject", json={"reason": "Maintenance"}, headers={"X-User-Id": "host-1"}
        )
        assert response.json()["status"] == "REJECTED"

        checkout = {"today": days_from_today(23).isoformat()}
        assert client.post(f"/api/bookings/{second}/complete", params=checkout).status_code == 409
        client.post(f"/api/bookings/{second}/confirm", headers={"X-User-Id": "host-1"})
        response = client.post(f"/api/bookings/{second}/complete")
        assert response.status_code == 422
        assert response.json()["details"]["rule"] == "stay_ended_before_complete"
        assert client.post(f"/api/bookings/{second}/complete", params=checkout).json()["status"] == "COMPLETED"

    @pytest.mark.api
    def test_guest_and_host_listings(self, client):
        """Test per-guest grouping and per-host listing"""
        property_id = create_published_property(client)
        booking_id = request_booking(client, property_id, start_in=10).json()["id"]

        response = client.get("/api/guests/guest-1/bookings", params={"today": TODAY.isoformat()})
        data = response.json()
        assert [b["id"] for b in data["upcoming"]] == [booking_id]
        assert data["current"] == [] and data["past"] == []

        response = client.get("/api/hosts/host-1/bookings")
        assert [b["id"] for b in response.json()] == [booking_id]
