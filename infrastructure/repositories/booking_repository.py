"""SQLAlchemy implementation of BookingRepository"""
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domain.entities import Booking, utc_now
from domain.enums import BLOCKING_BOOKING_STATUSES, BookingStatus
from domain.exceptions import EntityNotFoundError, InvalidStatusTransitionError, PropertyNotAvailableError
from domain.repositories import BookingRepository
from domain.value_objects import DateRange
from infrastructure.mappers.booking_mapper import (
    DEFAULT_SERVICE_FEE_RATE,
    STATUS_TO_DOMAIN,
    STATUS_TO_STORAGE,
    BookingMapper,
)
from infrastructure.persistence.models import BookingModel, BookingNightModel, BookingStatusColumn
from infrastructure.repositories.base import SQLAlchemyRepository

logger = logging.getLogger(__name__)

BLOCKING_COLUMNS = [STATUS_TO_STORAGE[status] for status in BLOCKING_BOOKING_STATUSES]
ACTIVE_COLUMNS = [STATUS_TO_STORAGE[BookingStatus.PENDING], STATUS_TO_STORAGE[BookingStatus.CONFIRMED]]

# columns owned by storage or fixed at insert time
_IMMUTABLE_COLUMNS = {"id", "created_at", "payment_status"}


def overlap_condition(property_id, date_range: DateRange):
    """Blocking, live bookings of the property whose stay shares a night with date_range"""
    return (
        (BookingModel.property_id == property_id)
        & BookingModel.deleted_at.is_(None)
        & BookingModel.status.in_(BLOCKING_COLUMNS)
        & (BookingModel.check_in_date < date_range.end_date)
        & (BookingModel.check_out_date > date_range.start_date)
    )


def _same_stay(model: BookingModel, booking: Booking) -> bool:
    return (
        model.deleted_at is None
        and model.property_id == booking.property_id
        and model.guest_id == booking.guest_id
        and model.check_in_date == booking.date_range.start_date
        and model.check_out_date == booking.date_range.end_date
    )


class SQLAlchemyBookingRepository(SQLAlchemyRepository, BookingRepository):

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        query_timeout: Optional[float] = None,
        service_fee_rate: Decimal = DEFAULT_SERVICE_FEE_RATE,
    ):
        super().__init__(session_factory, query_timeout)
        self._service_fee_rate = service_fee_rate

    @staticmethod
    def _live() -> Select:
        return select(BookingModel).where(BookingModel.deleted_at.is_(None))

    async def _find_many(self, operation: str, stmt: Select) -> List[Booking]:
        async def work(session: AsyncSession) -> List[Booking]:
            result = await session.execute(stmt)
            return BookingMapper.to_domain_list(result.scalars().all())

        return await self._run(operation, work)

    async def _count(self, operation: str, condition) -> int:
        async def work(session: AsyncSession) -> int:
            stmt = select(func.count()).select_from(BookingModel).where(BookingModel.deleted_at.is_(None), condition)
            return (await session.execute(stmt)).scalar_one()

        return await self._run(operation, work)

    @staticmethod
    async def _overlapping(
        session: AsyncSession,
        property_id: str,
        date_range: DateRange,
        exclude_booking_id: Optional[str] = None,
    ) -> List[BookingModel]:
        stmt = select(BookingModel).where(overlap_condition(property_id, date_range))
        if exclude_booking_id is not None:
            stmt = stmt.where(BookingModel.id != exclude_booking_id)
        result = await session.execute(stmt.order_by(BookingModel.check_in_date))
        return list(result.scalars().all())

    @staticmethod
    async def _release_nights(session: AsyncSession, booking_id: str) -> None:
        await session.execute(delete(BookingNightModel).where(BookingNightModel.booking_id == booking_id))

    # ==================== WRITES ====================
    async def create(self, booking: Booking) -> Booking:
        """Insert the booking and claim its nights in one transaction

        The overlap re-check catches conflicts already committed; the unique
        night claims catch a concurrent writer racing past the re-check.
        """
        date_range = booking.date_range

        async def work(session: AsyncSession) -> Booking:
            # a timeout can fire after an earlier attempt already committed
            stored = await session.get(BookingModel, booking.id)
            if stored is not None and _same_stay(stored, booking):
                logger.info(f"Booking {booking.id} was already stored by an earlier attempt")
                return booking

            session.add(BookingModel(**BookingMapper.to_persistence(booking, self._service_fee_rate)))
            await session.flush()

            if booking.blocks_calendar():
                clashes = await self._overlapping(session, booking.property_id, date_range, booking.id)
                if clashes:
                    raise PropertyNotAvailableError(booking.property_id, date_range.start_date, date_range.end_date)

                session.add_all([
                    BookingNightModel(property_id=booking.property_id, night=night, booking_id=booking.id)
                    for night in date_range.nights()
                ])
                try:
                    await session.flush()
                except IntegrityError as e:
                    raise PropertyNotAvailableError(
                        booking.property_id, date_range.start_date, date_range.end_date
                    ) from e
            return booking

        try:
            created = await self._run("create booking", work)
        except PropertyNotAvailableError:
            logger.warning(f"Booking {booking.id} rejected: property {booking.property_id} taken for {date_range}")
            raise
        logger.info(f"Booking {booking.id} stored for property {booking.property_id} ({date_range})")
        return created

    async def update(self, booking: Booking, expected_status: Optional[BookingStatus] = None) -> Booking:
        """Write the booking back in a single conditional UPDATE

        With ``expected_status`` the row is only written while it still holds
        that status; a concurrent transition that got there first makes this
        one fail with InvalidStatusTransitionError.
        """
        values = {
            column: value
            for column, value in BookingMapper.to_persistence(booking, self._service_fee_rate).items()
            if column not in _IMMUTABLE_COLUMNS
        }

        async def work(session: AsyncSession) -> Booking:
            stmt = update(BookingModel).where(BookingModel.id == booking.id, BookingModel.deleted_at.is_(None))
            if expected_status is not None:
                stmt = stmt.where(BookingModel.status == STATUS_TO_STORAGE[expected_status])
            result = await session.execute(stmt.values(**values).execution_options(synchronize_session=False))

            if result.rowcount == 0:
                current = await session.scalar(
                    select(BookingModel.status).where(BookingModel.id == booking.id, BookingModel.deleted_at.is_(None))
                )
                if current is None:
                    raise EntityNotFoundError("Booking", booking.id)
                current_status = STATUS_TO_DOMAIN[BookingStatusColumn(current)]
                logger.warning(
                    f"Booking {booking.id} moved to {current_status.value} before "
                    f"{expected_status.value} -> {booking.status.value} was written"
                )
                raise InvalidStatusTransitionError("Booking", current_status, booking.status)

            if not booking.blocks_calendar():
                await self._release_nights(session, booking.id)
            return booking

        return await self._run("update booking", work)

    async def delete(self, booking_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            model = await session.get(BookingModel, booking_id)
            if model is None or model.deleted_at is not None:
                return False
            model.deleted_at = utc_now()
            await self._release_nights(session, booking_id)
            return True

        deleted = await self._run("delete booking", work)
        if deleted:
            logger.info(f"Booking {booking_id} soft-deleted")
        return deleted

    # ==================== READS ====================
    async def find_by_id(self, booking_id: str) -> Optional[Booking]:
        async def work(session: AsyncSession) -> Optional[Booking]:
            result = await session.execute(self._live().where(BookingModel.id == booking_id))
            model = result.scalar_one_or_none()
            return BookingMapper.to_domain(model) if model is not None else None

        return await self._run("find booking", work)

    async def find_by_property_id(self, property_id: str) -> List[Booking]:
        stmt = self._live().where(BookingModel.property_id == property_id).order_by(BookingModel.check_in_date)
        return await self._find_many("find bookings by property", stmt)

    async def find_by_guest_id(self, guest_id: str) -> List[Booking]:
        stmt = self._live().where(BookingModel.guest_id == guest_id).order_by(BookingModel.created_at.desc())
        return await self._find_many("find bookings by guest", stmt)

    async def find_by_host_id(self, host_id: str) -> List[Booking]:
        stmt = self._live().where(BookingModel.host_id == host_id).order_by(BookingModel.created_at.desc())
        return await self._find_many("find bookings by host", stmt)

    async def find_by_status(self, status: BookingStatus) -> List[Booking]:
        stmt = self._live().where(BookingModel.status == STATUS_TO_STORAGE[status]).order_by(
            BookingModel.check_in_date
        )
        return await self._find_many("find bookings by status", stmt)

    async def find_overlapping_bookings(
        self,
        property_id: str,
        date_range: DateRange,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        async def work(session: AsyncSession) -> List[Booking]:
            models = await self._overlapping(session, property_id, date_range, exclude_booking_id)
            return BookingMapper.to_domain_list(models)

        return await self._run("find overlapping bookings", work)

    async def is_property_available(
        self,
        property_id: str,
        date_range: DateRange,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        async def work(session: AsyncSession) -> bool:
            stmt = select(BookingModel.id).where(overlap_condition(property_id, date_range))
            if exclude_booking_id is not None:
                stmt = stmt.where(BookingModel.id != exclude_booking_id)
            result = await session.execute(stmt.limit(1))
            return result.first() is None

        return await self._run("check availability", work)

    async def find_upcoming_bookings_by_guest_id(self, guest_id: str, today: date) -> List[Booking]:
        stmt = self._live().where(
            BookingModel.guest_id == guest_id,
            BookingModel.status.in_(ACTIVE_COLUMNS),
            BookingModel.check_in_date > today,
        ).order_by(BookingModel.check_in_date)
        return await self._find_many("find upcoming bookings", stmt)

    async def find_current_bookings_by_guest_id(self, guest_id: str, today: date) -> List[Booking]:
        stmt = self._live().where(
            BookingModel.guest_id == guest_id,
            BookingModel.status == STATUS_TO_STORAGE[BookingStatus.CONFIRMED],
            BookingModel.check_in_date <= today,
            BookingModel.check_out_date > today,
        ).order_by(BookingModel.check_in_date)
        return await self._find_many("find current bookings", stmt)

    async def find_past_bookings_by_guest_id(self, guest_id: str, today: date) -> List[Booking]:
        stmt = self._live().where(
            BookingModel.guest_id == guest_id,
            BookingModel.check_out_date <= today,
        ).order_by(BookingModel.check_in_date.desc())
        return await self._find_many("find past bookings", stmt)

    async def count_by_property_id(self, property_id: str) -> int:
        return await self._count("count bookings by property", BookingModel.property_id == property_id)

    async def count_by_host_id(self, host_id: str) -> int:
        return await self._count("count bookings by host", BookingModel.host_id == host_id)
