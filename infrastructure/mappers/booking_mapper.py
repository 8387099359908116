"""
Booking Mapper

Converts between ``bookings`` rows and Booking entities.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List

from domain.entities import Booking
from domain.enums import BookingStatus, CancellationPolicy
from domain.value_objects import CENT, DateRange, Money
from infrastructure.mappers.base import as_utc, ensure_exhaustive
from infrastructure.persistence.models import (
    BookingStatusColumn,
    CancellationPolicyColumn,
    PaymentStatusColumn,
)

DEFAULT_SERVICE_FEE_RATE = Decimal("0.10")

# Rows written before the policy column existed carry NULL
LEGACY_CANCELLATION_POLICY = CancellationPolicy.MODERATE

STATUS_TO_DOMAIN: Dict[BookingStatusColumn, BookingStatus] = ensure_exhaustive(
    {
        BookingStatusColumn.PENDING: BookingStatus.PENDING,
        BookingStatusColumn.CONFIRMED: BookingStatus.CONFIRMED,
        BookingStatusColumn.CANCELLED: BookingStatus.CANCELLED,
        BookingStatusColumn.COMPLETED: BookingStatus.COMPLETED,
        BookingStatusColumn.REJECTED: BookingStatus.REJECTED,
    },
    BookingStatusColumn,
    BookingStatus,
)
STATUS_TO_STORAGE: Dict[BookingStatus, BookingStatusColumn] = ensure_exhaustive(
    {domain: column for column, domain in STATUS_TO_DOMAIN.items()},
    BookingStatus,
    BookingStatusColumn,
)

POLICY_TO_DOMAIN: Dict[CancellationPolicyColumn, CancellationPolicy] = ensure_exhaustive(
    {
        CancellationPolicyColumn.FLEXIBLE: CancellationPolicy.FLEXIBLE,
        CancellationPolicyColumn.MODERATE: CancellationPolicy.MODERATE,
        CancellationPolicyColumn.STRICT: CancellationPolicy.FIXED,
    },
    CancellationPolicyColumn,
    CancellationPolicy,
)
POLICY_TO_STORAGE: Dict[CancellationPolicy, CancellationPolicyColumn] = ensure_exhaustive(
    {domain: column for column, domain in POLICY_TO_DOMAIN.items()},
    CancellationPolicy,
    CancellationPolicyColumn,
)


class BookingMapper:
    """Pure translation, no I/O"""

    @staticmethod
    def to_domain(record: Any) -> Booking:
        currency = record.currency
        policy = record.cancellation_policy
        return Booking.reconstitute(
            id=record.id,
            property_id=record.property_id,
            guest_id=record.guest_id,
            host_id=record.host_id,
            date_range=DateRange(start_date=record.check_in_date, end_date=record.check_out_date),
            price_per_night=Money(amount=record.nightly_rate, currency=currency),
            total_price=Money(amount=record.total_price, currency=currency),
            guest_count=record.guest_count,
            status=STATUS_TO_DOMAIN[BookingStatusColumn(record.status)],
            cancellation_policy=(
                POLICY_TO_DOMAIN[CancellationPolicyColumn(policy)] if policy is not None
                else LEGACY_CANCELLATION_POLICY
            ),
            cancellation_reason=record.cancellation_reason,
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
            confirmed_at=as_utc(record.confirmed_at),
            cancelled_at=as_utc(record.cancelled_at),
        )

    @staticmethod
    def to_persistence(booking: Booking, service_fee_rate: Decimal = DEFAULT_SERVICE_FEE_RATE) -> Dict[str, Any]:
        """Column values for the booking; the total is split into subtotal and service fee"""
        total = booking.total_price.amount
        service_fee = (total * service_fee_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        return {
            "id": booking.id,
            "property_id": booking.property_id,
            "guest_id": booking.guest_id,
            "host_id": booking.host_id,
            "check_in_date": booking.date_range.start_date,
            "check_out_date": booking.date_range.end_date,
            "number_of_nights": booking.number_of_nights,
            "guest_count": booking.guest_count,
            "nightly_rate": booking.price_per_night.amount,
            "subtotal": total - service_fee,
            "service_fee": service_fee,
            "cleaning_fee": Decimal("0.00"),
            "total_price": total,
            "currency": booking.total_price.currency,
            "status": STATUS_TO_STORAGE[booking.status],
            "cancellation_policy": POLICY_TO_STORAGE[booking.cancellation_policy],
            "payment_status": PaymentStatusColumn.PENDING,
            "cancellation_reason": booking.cancellation_reason,
            "created_at": booking.created_at,
            "updated_at": booking.updated_at,
            "confirmed_at": booking.confirmed_at,
            "cancelled_at": booking.cancelled_at,
        }

    @staticmethod
    def to_domain_list(records: Iterable[Any]) -> List[Booking]:
        return [BookingMapper.to_domain(record) for record in records]
