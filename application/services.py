"""Application Services - Business use cases"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from domain.entities import Booking, Favorite, Property, User
from domain.enums import BookingStatus, CancellationPolicy, CancelledBy, PropertyType, UserRole
from domain.exceptions import (
    BusinessRuleViolationError,
    DuplicateEmailError,
    DuplicateFavoriteError,
    EntityNotFoundError,
    ForbiddenActionError,
    InvalidGuestCountError,
    PropertyNotAvailableError,
    PropertyNotBookableError,
)
from domain.repositories import (
    BookingRepository,
    FavoriteRepository,
    PropertyRepository,
    PropertySearchCriteria,
    UserRepository,
)
from domain.value_objects import DEFAULT_CURRENCY, Address, DateRange, Email, Money, PhoneNumber, RefundQuote

logger = logging.getLogger(__name__)


class GuestBookings(BaseModel):
    """A guest's bookings split around a given day"""
    upcoming: List[Booking]
    current: List[Booking]
    past: List[Booking]


class HostStatistics(BaseModel):
    total_bookings: int
    pending_bookings: int
    confirmed_bookings: int
    cancelled_bookings: int
    completed_bookings: int


class BookingService:
    """Service for Booking business use cases"""

    def __init__(self, booking_repository: BookingRepository, property_repository: PropertyRepository):
        self.booking_repository = booking_repository
        self.property_repository = property_repository

    async def _get_property(self, property_id: str) -> Property:
        property = await self.property_repository.find_by_id(property_id)
        if property is None:
            raise EntityNotFoundError("Property", property_id)
        return property

    async def _require_host(self, booking: Booking, actor_id: Optional[str], action: str) -> None:
        if actor_id is None:
            return
        property = await self._get_property(booking.property_id)
        if not property.is_owned_by(actor_id):
            raise ForbiddenActionError(actor_id, action)

    # ==================== CREATE ====================
    async def create_booking(
        self,
        property_id: str,
        guest_id: str,
        date_range: DateRange,
        guest_count: int,
        cancellation_policy: CancellationPolicy = CancellationPolicy.MODERATE,
        today: Optional[date] = None,
    ) -> Booking:
        """Create a PENDING booking if the property is bookable and free

        Raises EntityNotFoundError, PropertyNotBookableError,
        InvalidGuestCountError, InvalidDateRangeError or
        PropertyNotAvailableError.
        """
        property = await self._get_property(property_id)
        if not property.is_available_for_booking():
            raise PropertyNotBookableError(property_id, property.status)
        if not property.can_accommodate(guest_count):
            raise InvalidGuestCountError(
                guest_count,
                f"Property can only accommodate between 1 and {property.max_guests} guests",
                maximum=property.max_guests,
            )
        property.validate_stay(date_range)

        booking = Booking.create(
            property_id=property.id,
            guest_id=guest_id,
            host_id=property.host_id,
            date_range=date_range,
            price_per_night=property.base_price,
            guest_count=guest_count,
            cancellation_policy=cancellation_policy,
            today=today,
        )

        # fast path; the repository re-checks inside the write transaction
        if not await self.booking_repository.is_property_available(property_id, date_range):
            logger.warning(f"Property {property_id} already booked for {date_range}")
            raise PropertyNotAvailableError(property_id, date_range.start_date, date_range.end_date)

        created = await self.booking_repository.create(booking)
        logger.info(f"Created booking {created.id} for guest {guest_id} at property {property_id}")
        return created

    # ==================== TRANSITIONS ====================
    async def _save_transition(self, booking: Booking, loaded_status: BookingStatus) -> Booking:
        # only lands if no concurrent transition changed the row since it was loaded
        return await self.booking_repository.update(booking, expected_status=loaded_status)

    async def confirm_booking(
        self, booking_id: str, actor_id: Optional[str] = None, today: Optional[date] = None
    ) -> Booking:
        booking = await self.get_booking(booking_id)
        await self._require_host(booking, actor_id, "confirm this booking")
        loaded_status = booking.status
        booking.confirm(today)
        updated = await self._save_transition(booking, loaded_status)
        logger.info(f"Booking {booking_id} confirmed")
        return updated

    async def reject_booking(
        self, booking_id: str, reason: Optional[str] = None, actor_id: Optional[str] = None
    ) -> Booking:
        booking = await self.get_booking(booking_id)
        await self._require_host(booking, actor_id, "reject this booking")
        loaded_status = booking.status
        booking.reject(reason)
        updated = await self._save_transition(booking, loaded_status)
        logger.info(f"Booking {booking_id} rejected")
        return updated

    async def cancel_booking(
        self, booking_id: str, reason: Optional[str] = None, actor_id: Optional[str] = None
    ) -> Booking:
        """Cancel as the guest or as the owning host; frees the booked nights"""
        booking = await self.get_booking(booking_id)
        cancelled_by = CancelledBy.GUEST
        if actor_id is not None and actor_id != booking.guest_id:
            await self._require_host(booking, actor_id, "cancel this booking")
            cancelled_by = CancelledBy.HOST

        loaded_status = booking.status
        refund = booking.calculate_refund(cancelled_by)
        booking.cancel(reason)
        updated = await self._save_transition(booking, loaded_status)
        logger.info(
            f"Booking {booking_id} cancelled by {cancelled_by.value.lower()}, "
            f"refund {refund.refund} ({refund.percentage}%)"
        )
        return updated

    async def complete_booking(self, booking_id: str, today: Optional[date] = None) -> Booking:
        """Close a confirmed stay once its checkout day has been reached"""
        booking = await self.get_booking(booking_id)
        loaded_status = booking.status
        booking.complete(today)
        updated = await self._save_transition(booking, loaded_status)
        logger.info(f"Booking {booking_id} completed")
        return updated

    # ==================== QUERIES ====================
    async def get_booking(self, booking_id: str) -> Booking:
        booking = await self.booking_repository.find_by_id(booking_id)
        if booking is None:
            raise EntityNotFoundError("Booking", booking_id)
        return booking

    async def is_property_available(self, property_id: str, date_range: DateRange) -> bool:
        return await self.booking_repository.is_property_available(property_id, date_range)

    async def find_overlapping_bookings(self, property_id: str, date_range: DateRange) -> List[Booking]:
        return await self.booking_repository.find_overlapping_bookings(property_id, date_range)

    async def find_bookings_for_guest(self, guest_id: str) -> List[Booking]:
        return await self.booking_repository.find_by_guest_id(guest_id)

    async def find_bookings_for_host(self, host_id: str) -> List[Booking]:
        return await self.booking_repository.find_by_host_id(host_id)

    async def find_bookings_for_property(self, property_id: str) -> List[Booking]:
        return await self.booking_repository.find_by_property_id(property_id)

    async def find_pending_bookings_for_host(self, host_id: str) -> List[Booking]:
        bookings = await self.booking_repository.find_by_host_id(host_id)
        return [b for b in bookings if b.status == BookingStatus.PENDING]

    async def get_guest_bookings(self, guest_id: str, today: Optional[date] = None) -> GuestBookings:
        today = today or date.today()
        return GuestBookings(
            upcoming=await self.booking_repository.find_upcoming_bookings_by_guest_id(guest_id, today),
            current=await self.booking_repository.find_current_bookings_by_guest_id(guest_id, today),
            past=await self.booking_repository.find_past_bookings_by_guest_id(guest_id, today),
        )

    async def get_host_statistics(self, host_id: str) -> HostStatistics:
        bookings = await self.booking_repository.find_by_host_id(host_id)

        def count(status: BookingStatus) -> int:
            return sum(1 for b in bookings if b.status == status)

        return HostStatistics(
            total_bookings=len(bookings),
            pending_bookings=count(BookingStatus.PENDING),
            confirmed_bookings=count(BookingStatus.CONFIRMED),
            cancelled_bookings=count(BookingStatus.CANCELLED),
            completed_bookings=count(BookingStatus.COMPLETED),
        )

    async def quote_refund(
        self,
        booking_id: str,
        cancelled_by: CancelledBy = CancelledBy.GUEST,
        on_date: Optional[date] = None,
    ) -> RefundQuote:
        booking = await self.get_booking(booking_id)
        if not booking.can_be_cancelled():
            raise BusinessRuleViolationError(
                "booking_cancellable", f"Booking {booking_id} can no longer be cancelled"
            )
        return booking.calculate_refund(cancelled_by, on_date)

    async def delete_booking(self, booking_id: str) -> bool:
        """Soft delete; only cancelled or rejected bookings may be removed"""
        booking = await self.get_booking(booking_id)
        if booking.status not in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
            raise BusinessRuleViolationError(
                "booking_closed_before_delete",
                "Only cancelled or rejected bookings can be deleted",
                {"status": booking.status.value},
            )
        return await self.booking_repository.delete(booking_id)


class PropertyService:
    """Service for Property business use cases"""

    def __init__(self, repository: PropertyRepository, default_currency: str = DEFAULT_CURRENCY):
        self.repository = repository
        self.default_currency = default_currency

    async def create_property(
        self,
        host_id: str,
        title: str,
        address: Dict[str, Any],
        base_price: Decimal,
        max_guests: int,
        currency: Optional[str] = None,
        cleaning_fee: Optional[Decimal] = None,
        property_type: PropertyType = PropertyType.APARTMENT,
        **details,
    ) -> Property:
        """Create a DRAFT listing; prices are in ``currency`` or the default currency"""
        currency = currency or self.default_currency
        property = Property.create(
            host_id=host_id,
            title=title,
            address=Address.create(**address),
            base_price=Money.create(base_price, currency),
            cleaning_fee=Money.create(cleaning_fee, currency) if cleaning_fee is not None else None,
            max_guests=max_guests,
            property_type=property_type,
            **details,
        )
        created = await self.repository.create(property)
        logger.info(f"Created property {created.id} for host {host_id}")
        return created

    async def get_property(self, property_id: str) -> Property:
        property = await self.repository.find_by_id(property_id)
        if property is None:
            raise EntityNotFoundError("Property", property_id)
        return property

    async def _owned_property(self, property_id: str, actor_id: Optional[str], action: str) -> Property:
        property = await self.get_property(property_id)
        if actor_id is not None and not property.is_owned_by(actor_id):
            raise ForbiddenActionError(actor_id, action)
        return property

    async def publish_property(self, property_id: str, actor_id: Optional[str] = None) -> Property:
        property = await self._owned_property(property_id, actor_id, "publish this property")
        property.publish()
        logger.info(f"Property {property_id} published")
        return await self.repository.update(property)

    async def unlist_property(self, property_id: str, actor_id: Optional[str] = None) -> Property:
        property = await self._owned_property(property_id, actor_id, "unlist this property")
        property.unlist()
        logger.info(f"Property {property_id} unlisted")
        return await self.repository.update(property)

    async def suspend_property(self, property_id: str, reason: str) -> Property:
        property = await self.get_property(property_id)
        property.suspend(reason)
        logger.info(f"Property {property_id} suspended: {reason}")
        return await self.repository.update(property)

    async def search_properties(self, criteria: PropertySearchCriteria) -> List[Property]:
        return await self.repository.search(criteria)

    async def find_available_properties(self, date_range: DateRange) -> List[Property]:
        return await self.repository.find_available(date_range)

    async def get_host_properties(self, host_id: str) -> List[Property]:
        return await self.repository.find_by_host_id(host_id)


class UserService:
    """Service for User business use cases"""

    def __init__(self, repository: UserRepository):
        self.repository = repository

    async def register_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone_number: Optional[str] = None,
        country_code: Optional[str] = None,
    ) -> User:
        address = Email.create(email)
        if await self.repository.exists_by_email(address.value):
            raise DuplicateEmailError(address.value)

        phone = PhoneNumber.create(phone_number, country_code) if phone_number else None
        user = User.create(email=address, first_name=first_name, last_name=last_name, phone_number=phone)
        created = await self.repository.create(user)
        logger.info(f"Registered user {created.id}")
        return created

    async def get_user(self, user_id: str) -> User:
        user = await self.repository.find_by_id(user_id)
        if user is None:
            raise EntityNotFoundError("User", user_id)
        return user

    async def promote_to_host(self, user_id: str) -> User:
        user = await self.get_user(user_id)
        user.add_role(UserRole.HOST)
        logger.info(f"User {user_id} is now a host")
        return await self.repository.update(user)

    async def suspend_user(self, user_id: str, reason: str) -> User:
        user = await self.get_user(user_id)
        user.suspend(reason)
        logger.info(f"User {user_id} suspended: {reason}")
        return await self.repository.update(user)


class FavoriteService:
    """Service for a user's saved properties"""

    def __init__(self, repository: FavoriteRepository, property_repository: PropertyRepository):
        self.repository = repository
        self.property_repository = property_repository

    async def add_favorite(self, user_id: str, property_id: str, notes: Optional[str] = None) -> Favorite:
        if not await self.property_repository.exists(property_id):
            raise EntityNotFoundError("Property", property_id)
        if await self.repository.exists(user_id, property_id):
            raise DuplicateFavoriteError(user_id, property_id)
        return await self.repository.create(Favorite.create(user_id, property_id, notes))

    async def remove_favorite(self, user_id: str, property_id: str) -> bool:
        return await self.repository.delete_by_user_and_property(user_id, property_id)

    async def toggle_favorite(self, user_id: str, property_id: str) -> bool:
        """Returns True when the property is a favorite afterwards"""
        if await self.repository.delete_by_user_and_property(user_id, property_id):
            return False
        await self.add_favorite(user_id, property_id)
        return True

    async def list_favorites(self, user_id: str) -> List[Favorite]:
        return await self.repository.find_by_user_id(user_id)

    async def update_notes(self, user_id: str, property_id: str, notes: Optional[str]) -> Favorite:
        favorite = await self.repository.find_by_user_and_property(user_id, property_id)
        if favorite is None:
            raise EntityNotFoundError("Favorite", f"{user_id}/{property_id}")
        favorite.update_notes(notes)
        return await self.repository.update(favorite)

    async def is_favorite(self, user_id: str, property_id: str) -> bool:
        return await self.repository.exists(user_id, property_id)
