"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from domain.entities import Booking, Favorite, Property, User
from domain.enums import BookingStatus, PropertyStatus, PropertyType
from domain.value_objects import DateRange


class PropertySearchCriteria(BaseModel):
    """Filters for property search; unset fields do not filter"""

    city: Optional[str] = None
    country: Optional[str] = None
    property_type: Optional[PropertyType] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    guest_count: Optional[int] = None
    min_bedrooms: Optional[int] = None
    date_range: Optional[DateRange] = None
    instant_booking: Optional[bool] = None
    status: PropertyStatus = PropertyStatus.PUBLISHED
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class BookingRepository(ABC):
    """Repository interface for Booking Aggregate"""

    @abstractmethod
    async def create(self, booking: Booking) -> Booking:
        """Persist a new booking, claiming its nights atomically

        Raises PropertyNotAvailableError if any night is already taken.
        """
        pass

    @abstractmethod
    async def update(self, booking: Booking, expected_status: Optional[BookingStatus] = None) -> Booking:
        """Update booking; releases nights for cancelled/rejected bookings

        When expected_status is given the write only succeeds while the stored
        booking is still in that status, otherwise InvalidStatusTransitionError.
        """
        pass

    @abstractmethod
    async def find_by_id(self, booking_id: str) -> Optional[Booking]:
        pass

    @abstractmethod
    async def find_by_property_id(self, property_id: str) -> List[Booking]:
        pass

    @abstractmethod
    async def find_by_guest_id(self, guest_id: str) -> List[Booking]:
        pass

    @abstractmethod
    async def find_by_host_id(self, host_id: str) -> List[Booking]:
        pass

    @abstractmethod
    async def find_by_status(self, status: BookingStatus) -> List[Booking]:
        pass

    @abstractmethod
    async def find_overlapping_bookings(
        self,
        property_id: str,
        date_range: DateRange,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """Blocking bookings of the property whose stay overlaps date_range"""
        pass

    @abstractmethod
    async def is_property_available(
        self,
        property_id: str,
        date_range: DateRange,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        pass

    @abstractmethod
    async def find_upcoming_bookings_by_guest_id(self, guest_id: str, today: date) -> List[Booking]:
        pass

    @abstractmethod
    async def find_current_bookings_by_guest_id(self, guest_id: str, today: date) -> List[Booking]:
        pass

    @abstractmethod
    async def find_past_bookings_by_guest_id(self, guest_id: str, today: date) -> List[Booking]:
        pass

    @abstractmethod
    async def count_by_property_id(self, property_id: str) -> int:
        pass

    @abstractmethod
    async def count_by_host_id(self, host_id: str) -> int:
        pass

    @abstractmethod
    async def delete(self, booking_id: str) -> bool:
        """Soft delete; returns False if there was nothing to delete"""
        pass


class PropertyRepository(ABC):
    """Repository interface for Property Aggregate"""

    @abstractmethod
    async def create(self, property: Property) -> Property:
        pass

    @abstractmethod
    async def update(self, property: Property) -> Property:
        pass

    @abstractmethod
    async def find_by_id(self, property_id: str) -> Optional[Property]:
        pass

    @abstractmethod
    async def find_by_host_id(self, host_id: str) -> List[Property]:
        pass

    @abstractmethod
    async def find_published_by_host_id(self, host_id: str) -> List[Property]:
        pass

    @abstractmethod
    async def find_by_status(self, status: PropertyStatus) -> List[Property]:
        pass

    @abstractmethod
    async def find_by_type(self, property_type: PropertyType) -> List[Property]:
        pass

    @abstractmethod
    async def search(self, criteria: PropertySearchCriteria) -> List[Property]:
        pass

    @abstractmethod
    async def find_available(self, date_range: DateRange) -> List[Property]:
        """Published properties with no blocking booking overlapping date_range"""
        pass

    @abstractmethod
    async def find_recent(self, limit: int = 10) -> List[Property]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def count_by_host_id(self, host_id: str) -> int:
        pass

    @abstractmethod
    async def exists(self, property_id: str) -> bool:
        pass

    @abstractmethod
    async def delete(self, property_id: str) -> bool:
        pass


class UserRepository(ABC):
    """Repository interface for User Aggregate"""

    @abstractmethod
    async def create(self, user: User) -> User:
        """Raises DuplicateEmailError if the email is taken"""
        pass

    @abstractmethod
    async def update(self, user: User) -> User:
        pass

    @abstractmethod
    async def find_by_id(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    async def exists_by_email(self, email: str) -> bool:
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        pass


class FavoriteRepository(ABC):
    """Repository interface for Favorite Entity"""

    @abstractmethod
    async def create(self, favorite: Favorite) -> Favorite:
        """Raises DuplicateFavoriteError for a second live favorite of the same property"""
        pass

    @abstractmethod
    async def update(self, favorite: Favorite) -> Favorite:
        pass

    @abstractmethod
    async def find_by_id(self, favorite_id: str) -> Optional[Favorite]:
        pass

    @abstractmethod
    async def find_by_user_id(self, user_id: str) -> List[Favorite]:
        pass

    @abstractmethod
    async def find_by_user_and_property(self, user_id: str, property_id: str) -> Optional[Favorite]:
        pass

    @abstractmethod
    async def exists(self, user_id: str, property_id: str) -> bool:
        pass

    @abstractmethod
    async def count_by_user_id(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def delete(self, favorite_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_by_user_and_property(self, user_id: str, property_id: str) -> bool:
        pass
