"""SQLAlchemy implementation of PropertyRepository"""
import logging
from typing import List, Optional

from sqlalchemy import Select, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import Property, utc_now
from domain.enums import PropertyStatus, PropertyType
from domain.exceptions import EntityNotFoundError
from domain.repositories import PropertyRepository, PropertySearchCriteria
from domain.value_objects import DateRange
from infrastructure.mappers.property_mapper import STATUS_TO_DOMAIN, STATUS_TO_STORAGE, TYPE_TO_STORAGE, PropertyMapper
from infrastructure.persistence.models import PropertyModel
from infrastructure.repositories.base import SQLAlchemyRepository
from infrastructure.repositories.booking_repository import overlap_condition

logger = logging.getLogger(__name__)

PUBLISHED = STATUS_TO_STORAGE[PropertyStatus.PUBLISHED]


def _stored_as(status: PropertyStatus):
    """Every storage status read back as the given domain status"""
    return [column for column, domain in STATUS_TO_DOMAIN.items() if domain == status]


def _free_during(date_range: DateRange):
    return ~exists().where(overlap_condition(PropertyModel.id, date_range))


class SQLAlchemyPropertyRepository(SQLAlchemyRepository, PropertyRepository):

    @staticmethod
    def _live() -> Select:
        return select(PropertyModel).where(PropertyModel.deleted_at.is_(None))

    async def _find_many(self, operation: str, stmt: Select) -> List[Property]:
        async def work(session: AsyncSession) -> List[Property]:
            result = await session.execute(stmt)
            return PropertyMapper.to_domain_list(result.scalars().all())

        return await self._run(operation, work)

    async def _count(self, operation: str, *conditions) -> int:
        async def work(session: AsyncSession) -> int:
            stmt = (
                select(func.count())
                .select_from(PropertyModel)
                .where(PropertyModel.deleted_at.is_(None), *conditions)
            )
            return (await session.execute(stmt)).scalar_one()

        return await self._run(operation, work)

    # ==================== WRITES ====================
    async def create(self, property: Property) -> Property:
        async def work(session: AsyncSession) -> Property:
            session.add(PropertyModel(**PropertyMapper.to_persistence(property)))
            await session.flush()
            return property

        created = await self._run("create property", work)
        logger.info(f"Property {property.id} stored for host {property.host_id}")
        return created

    async def update(self, property: Property) -> Property:
        async def work(session: AsyncSession) -> Property:
            model = await session.get(PropertyModel, property.id)
            if model is None or model.deleted_at is not None:
                raise EntityNotFoundError("Property", property.id)
            for column, value in PropertyMapper.to_persistence(property).items():
                if column not in ("id", "created_at"):
                    setattr(model, column, value)
            await session.flush()
            return property

        return await self._run("update property", work)

    async def delete(self, property_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            model = await session.get(PropertyModel, property_id)
            if model is None or model.deleted_at is not None:
                return False
            model.deleted_at = utc_now()
            model.is_active = False
            return True

        deleted = await self._run("delete property", work)
        if deleted:
            logger.info(f"Property {property_id} soft-deleted")
        return deleted

    # ==================== READS ====================
    async def find_by_id(self, property_id: str) -> Optional[Property]:
        async def work(session: AsyncSession) -> Optional[Property]:
            result = await session.execute(self._live().where(PropertyModel.id == property_id))
            model = result.scalar_one_or_none()
            return PropertyMapper.to_domain(model) if model is not None else None

        return await self._run("find property", work)

    async def find_by_host_id(self, host_id: str) -> List[Property]:
        stmt = self._live().where(PropertyModel.host_id == host_id).order_by(PropertyModel.created_at.desc())
        return await self._find_many("find properties by host", stmt)

    async def find_published_by_host_id(self, host_id: str) -> List[Property]:
        stmt = self._live().where(
            PropertyModel.host_id == host_id,
            PropertyModel.status == PUBLISHED,
        ).order_by(PropertyModel.created_at.desc())
        return await self._find_many("find published properties by host", stmt)

    async def find_by_status(self, status: PropertyStatus) -> List[Property]:
        stmt = self._live().where(PropertyModel.status.in_(_stored_as(status))).order_by(
            PropertyModel.created_at.desc()
        )
        return await self._find_many("find properties by status", stmt)

    async def find_by_type(self, property_type: PropertyType) -> List[Property]:
        stmt = self._live().where(
            PropertyModel.property_type == TYPE_TO_STORAGE[property_type],
            PropertyModel.status == PUBLISHED,
        ).order_by(PropertyModel.created_at.desc())
        return await self._find_many("find properties by type", stmt)

    async def search(self, criteria: PropertySearchCriteria) -> List[Property]:
        stmt = self._live().where(PropertyModel.status.in_(_stored_as(criteria.status)))

        if criteria.city:
            stmt = stmt.where(func.lower(PropertyModel.city) == criteria.city.strip().lower())
        if criteria.country:
            stmt = stmt.where(func.lower(PropertyModel.country) == criteria.country.strip().lower())
        if criteria.property_type is not None:
            stmt = stmt.where(PropertyModel.property_type == TYPE_TO_STORAGE[criteria.property_type])
        if criteria.min_price is not None:
            stmt = stmt.where(PropertyModel.base_price >= criteria.min_price)
        if criteria.max_price is not None:
            stmt = stmt.where(PropertyModel.base_price <= criteria.max_price)
        if criteria.guest_count is not None:
            stmt = stmt.where(PropertyModel.max_guests >= criteria.guest_count)
        if criteria.min_bedrooms is not None:
            stmt = stmt.where(PropertyModel.bedrooms >= criteria.min_bedrooms)
        if criteria.instant_booking is not None:
            stmt = stmt.where(PropertyModel.instant_booking == criteria.instant_booking)
        if criteria.date_range is not None:
            stmt = stmt.where(_free_during(criteria.date_range))

        stmt = stmt.order_by(PropertyModel.created_at.desc()).limit(criteria.limit).offset(criteria.offset)
        return await self._find_many("search properties", stmt)

    async def find_available(self, date_range: DateRange) -> List[Property]:
        stmt = self._live().where(
            PropertyModel.status == PUBLISHED,
            _free_during(date_range),
        ).order_by(PropertyModel.created_at.desc())
        return await self._find_many("find available properties", stmt)

    async def find_recent(self, limit: int = 10) -> List[Property]:
        stmt = self._live().where(PropertyModel.status == PUBLISHED).order_by(
            PropertyModel.published_at.desc()
        ).limit(limit)
        return await self._find_many("find recent properties", stmt)

    async def count(self) -> int:
        return await self._count("count properties")

    async def count_by_host_id(self, host_id: str) -> int:
        return await self._count("count properties by host", PropertyModel.host_id == host_id)

    async def exists(self, property_id: str) -> bool:
        return await self._count("check property exists", PropertyModel.id == property_id) > 0
