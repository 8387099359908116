import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI

from api.dependencies import get_booking_service, get_current_actor, get_optional_actor, get_property_service
from api.exception_handlers import register_exception_handlers
from api.schemas import (
    # Booking
    CreateBookingRequest, ReasonRequest, BookingResponse, GuestBookingsResponse,
    RefundQuoteResponse, AvailabilityResponse, MoneyResponse,
    # Property
    CreatePropertyRequest, PropertyResponse,
)
from application.services import BookingService, PropertyService
from domain.entities import Booking, Property
from domain.enums import CancelledBy
from domain.value_objects import DateRange, Money
from infrastructure.config import Settings, get_settings
from infrastructure.container import Container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; the container lives for the lifespan of the app"""
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = Container(settings)
        if settings.DB_CREATE_SCHEMA:
            await container.init_schema()
        app.state.container = container
        logger.info(f"{settings.PROJECT_NAME} {settings.VERSION} started")
        try:
            yield
        finally:
            await container.dispose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Property rental booking API",
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(router)
    return app


# ============================================================================
# HEALTH
# ============================================================================

@router.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}


# ============================================================================
# BOOKING ENDPOINTS
# ============================================================================

@router.post("/bookings", response_model=BookingResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    request: CreateBookingRequest,
    service: BookingService = Depends(get_booking_service),
    guest_id: str = Depends(get_current_actor),
):
    """Request a stay; the acting user is the guest"""
    booking = await service.create_booking(
        property_id=request.property_id,
        guest_id=guest_id,
        date_range=DateRange.create(request.start_date, request.end_date),
        guest_count=request.guest_count,
        cancellation_policy=request.cancellation_policy,
    )
    return _booking_to_response(booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponse, tags=["Bookings"])
async def get_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    return _booking_to_response(await service.get_booking(booking_id))


@router.post("/bookings/{booking_id}/confirm", response_model=BookingResponse, tags=["Bookings"])
async def confirm_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
    actor_id: str = Depends(get_current_actor),
):
    """Host accepts a pending booking"""
    return _booking_to_response(await service.confirm_booking(booking_id, actor_id=actor_id))


@router.post("/bookings/{booking_id}/reject", response_model=BookingResponse, tags=["Bookings"])
async def reject_booking(
    booking_id: str,
    request: ReasonRequest,
    service: BookingService = Depends(get_booking_service),
    actor_id: str = Depends(get_current_actor),
):
    return _booking_to_response(await service.reject_booking(booking_id, request.reason, actor_id=actor_id))


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse, tags=["Bookings"])
async def cancel_booking(
    booking_id: str,
    request: ReasonRequest,
    service: BookingService = Depends(get_booking_service),
    actor_id: str = Depends(get_current_actor),
):
    """Guest or host cancels; the nights become bookable again"""
    return _booking_to_response(await service.cancel_booking(booking_id, request.reason, actor_id=actor_id))


@router.post("/bookings/{booking_id}/complete", response_model=BookingResponse, tags=["Bookings"])
async def complete_booking(
    booking_id: str,
    today: Optional[date] = None,
    service: BookingService = Depends(get_booking_service),
):
    """Close a confirmed stay; refused before its checkout day"""
    return _booking_to_response(await service.complete_booking(booking_id, today))


@router.get("/bookings/{booking_id}/refund-quote", response_model=RefundQuoteResponse, tags=["Bookings"])
async def quote_refund(
    booking_id: str,
    cancelled_by: CancelledBy = CancelledBy.GUEST,
    on_date: Optional[date] = None,
    service: BookingService = Depends(get_booking_service),
):
    quote = await service.quote_refund(booking_id, cancelled_by, on_date)
    return RefundQuoteResponse(
        booking_id=booking_id,
        cancelled_by=cancelled_by,
        refund=_money(quote.refund),
        percentage=quote.percentage,
    )


@router.delete("/bookings/{booking_id}", status_code=204, tags=["Bookings"])
async def delete_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    await service.delete_booking(booking_id)


@router.get("/guests/{guest_id}/bookings", response_model=GuestBookingsResponse, tags=["Bookings"])
async def get_guest_bookings(
    guest_id: str,
    today: Optional[date] = None,
    service: BookingService = Depends(get_booking_service),
):
    """Guest bookings split into upcoming, current and past"""
    grouped = await service.get_guest_bookings(guest_id, today)
    return GuestBookingsResponse(
        upcoming=[_booking_to_response(b) for b in grouped.upcoming],
        current=[_booking_to_response(b) for b in grouped.current],
        past=[_booking_to_response(b) for b in grouped.past],
    )


@router.get("/hosts/{host_id}/bookings", response_model=List[BookingResponse], tags=["Bookings"])
async def get_host_bookings(host_id: str, service: BookingService = Depends(get_booking_service)):
    bookings = await service.find_bookings_for_host(host_id)
    return [_booking_to_response(b) for b in bookings]


# ============================================================================
# PROPERTY ENDPOINTS
# ============================================================================

@router.post("/properties", response_model=PropertyResponse, status_code=201, tags=["Properties"])
async def create_property(
    request: CreatePropertyRequest,
    service: PropertyService = Depends(get_property_service),
    host_id: str = Depends(get_current_actor),
):
    """Create a draft listing owned by the acting user"""
    details = request.model_dump(exclude={"title", "address", "base_price", "max_guests", "currency", "cleaning_fee"})
    property = await service.create_property(
        host_id=host_id,
        title=request.title,
        address=request.address.model_dump(),
        base_price=request.base_price,
        max_guests=request.max_guests,
        currency=request.currency,
        cleaning_fee=request.cleaning_fee,
        **details,
    )
    return _property_to_response(property)


@router.get("/properties/{property_id}", response_model=PropertyResponse, tags=["Properties"])
async def get_property(property_id: str, service: PropertyService = Depends(get_property_service)):
    return _property_to_response(await service.get_property(property_id))


@router.post("/properties/{property_id}/publish", response_model=PropertyResponse, tags=["Properties"])
async def publish_property(
    property_id: str,
    service: PropertyService = Depends(get_property_service),
    actor_id: Optional[str] = Depends(get_optional_actor),
):
    return _property_to_response(await service.publish_property(property_id, actor_id=actor_id))


@router.get("/properties/{property_id}/availability", response_model=AvailabilityResponse, tags=["Properties"])
async def check_availability(
    property_id: str,
    start_date: date,
    end_date: date,
    property_service: PropertyService = Depends(get_property_service),
    booking_service: BookingService = Depends(get_booking_service),
):
    """Whether every night in [start_date, end_date) is free"""
    date_range = DateRange.create(start_date, end_date)
    await property_service.get_property(property_id)
    available = await booking_service.is_property_available(property_id, date_range)
    return AvailabilityResponse(
        property_id=property_id,
        start_date=date_range.start_date,
        end_date=date_range.end_date,
        available=available,
    )


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _money(money: Money) -> MoneyResponse:
    return MoneyResponse(amount=money.amount, currency=money.currency)


def _booking_to_response(booking: Booking) -> BookingResponse:
    """Convert Booking entity to BookingResponse"""
    return BookingResponse(
        id=booking.id,
        property_id=booking.property_id,
        guest_id=booking.guest_id,
        host_id=booking.host_id,
        start_date=booking.date_range.start_date,
        end_date=booking.date_range.end_date,
        number_of_nights=booking.number_of_nights,
        guest_count=booking.guest_count,
        price_per_night=_money(booking.price_per_night),
        total_price=_money(booking.total_price),
        status=booking.status.value,
        cancellation_policy=booking.cancellation_policy.value,
        cancellation_reason=booking.cancellation_reason,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
        confirmed_at=booking.confirmed_at,
        cancelled_at=booking.cancelled_at,
    )


def _property_to_response(property: Property) -> PropertyResponse:
    """Convert Property entity to PropertyResponse"""
    return PropertyResponse(
        id=property.id,
        host_id=property.host_id,
        title=property.title,
        description=property.description,
        property_type=property.property_type.value,
        status=property.status.value,
        city=property.address.city,
        country=property.address.country,
        address=property.address.format(),
        base_price=_money(property.base_price),
        cleaning_fee=_money(property.cleaning_fee) if property.cleaning_fee else None,
        max_guests=property.max_guests,
        bedrooms=property.bedrooms,
        beds=property.beds,
        images=property.images,
        minimum_stay=property.minimum_stay,
        maximum_stay=property.maximum_stay,
        instant_booking=property.instant_booking,
        created_at=property.created_at,
        published_at=property.published_at,
    )


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
