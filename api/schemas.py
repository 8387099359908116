"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from domain.enums import CancellationPolicy, CancelledBy, PropertyType


# ============================================================================
# BOOKING SCHEMAS
# ============================================================================

class CreateBookingRequest(BaseModel):
    """Create booking request DTO"""
    property_id: str
    start_date: date
    end_date: date
    guest_count: int
    cancellation_policy: CancellationPolicy = CancellationPolicy.MODERATE


class ReasonRequest(BaseModel):
    """Reject / cancel request DTO"""
    reason: Optional[str] = Field(None, max_length=500)


class MoneyResponse(BaseModel):
    """Money response DTO"""
    amount: Decimal
    currency: str


class BookingResponse(BaseModel):
    """Booking response DTO"""
    id: str
    property_id: str
    guest_id: str
    host_id: str
    start_date: date
    end_date: date
    number_of_nights: int
    guest_count: int
    price_per_night: MoneyResponse
    total_price: MoneyResponse
    status: str
    cancellation_policy: str
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class GuestBookingsResponse(BaseModel):
    upcoming: List[BookingResponse]
    current: List[BookingResponse]
    past: List[BookingResponse]


class RefundQuoteResponse(BaseModel):
    booking_id: str
    cancelled_by: CancelledBy
    refund: MoneyResponse
    percentage: int


class AvailabilityResponse(BaseModel):
    """Availability check response DTO"""
    property_id: str
    start_date: date
    end_date: date
    available: bool


# ============================================================================
# PROPERTY SCHEMAS
# ============================================================================

class AddressRequest(BaseModel):
    street: str
    city: str
    state: str = ""
    country: str
    postal_code: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CreatePropertyRequest(BaseModel):
    """Create property request DTO"""
    title: str
    description: str = ""
    property_type: PropertyType = PropertyType.APARTMENT
    address: AddressRequest
    base_price: Decimal
    cleaning_fee: Optional[Decimal] = None
    currency: Optional[str] = None
    max_guests: int
    bedrooms: int = 1
    bathrooms: Decimal = Decimal("1")
    beds: int = 1
    images: List[str] = []
    minimum_stay: int = 1
    maximum_stay: Optional[int] = None
    instant_booking: bool = False


class PropertyResponse(BaseModel):
    """Property response DTO"""
    id: str
    host_id: str
    title: str
    description: str
    property_type: str
    status: str
    city: str
    country: str
    address: str
    base_price: MoneyResponse
    cleaning_fee: Optional[MoneyResponse] = None
    max_guests: int
    bedrooms: int
    beds: int
    images: List[str]
    minimum_stay: int
    maximum_stay: Optional[int] = None
    instant_booking: bool
    created_at: datetime
    published_at: Optional[datetime] = None
