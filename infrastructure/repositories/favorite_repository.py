"""SQLAlchemy implementation of FavoriteRepository"""
import logging
from typing import List, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import Favorite, utc_now
from domain.exceptions import DuplicateFavoriteError, EntityNotFoundError
from domain.repositories import FavoriteRepository
from infrastructure.mappers.favorite_mapper import FavoriteMapper
from infrastructure.persistence.models import FavoriteModel
from infrastructure.repositories.base import SQLAlchemyRepository

logger = logging.getLogger(__name__)


def _live() -> Select:
    return select(FavoriteModel).where(FavoriteModel.deleted_at.is_(None))


class SQLAlchemyFavoriteRepository(SQLAlchemyRepository, FavoriteRepository):

    async def _find_one(self, operation: str, stmt: Select) -> Optional[Favorite]:
        async def work(session: AsyncSession) -> Optional[Favorite]:
            model = (await session.execute(stmt)).scalar_one_or_none()
            return FavoriteMapper.to_domain(model) if model is not None else None

        return await self._run(operation, work)

    async def create(self, favorite: Favorite) -> Favorite:
        async def work(session: AsyncSession) -> Favorite:
            session.add(FavoriteModel(**FavoriteMapper.to_persistence(favorite)))
            try:
                await session.flush()
            except IntegrityError as e:
                raise DuplicateFavoriteError(favorite.user_id, favorite.property_id) from e
            return favorite

        return await self._run("create favorite", work)

    async def update(self, favorite: Favorite) -> Favorite:
        async def work(session: AsyncSession) -> Favorite:
            model = await session.get(FavoriteModel, favorite.id)
            if model is None or model.deleted_at is not None:
                raise EntityNotFoundError("Favorite", favorite.id)
            model.notes = favorite.notes
            model.updated_at = favorite.updated_at
            return favorite

        return await self._run("update favorite", work)

    async def find_by_id(self, favorite_id: str) -> Optional[Favorite]:
        return await self._find_one("find favorite", _live().where(FavoriteModel.id == favorite_id))

    async def find_by_user_id(self, user_id: str) -> List[Favorite]:
        async def work(session: AsyncSession) -> List[Favorite]:
            stmt = _live().where(FavoriteModel.user_id == user_id).order_by(FavoriteModel.created_at.desc())
            return FavoriteMapper.to_domain_list((await session.execute(stmt)).scalars().all())

        return await self._run("find favorites by user", work)

    async def find_by_user_and_property(self, user_id: str, property_id: str) -> Optional[Favorite]:
        stmt = _live().where(FavoriteModel.user_id == user_id, FavoriteModel.property_id == property_id)
        return await self._find_one("find favorite by user and property", stmt)

    async def exists(self, user_id: str, property_id: str) -> bool:
        return await self.find_by_user_and_property(user_id, property_id) is not None

    async def count_by_user_id(self, user_id: str) -> int:
        async def work(session: AsyncSession) -> int:
            stmt = select(func.count()).select_from(FavoriteModel).where(
                FavoriteModel.user_id == user_id, FavoriteModel.deleted_at.is_(None)
            )
            return (await session.execute(stmt)).scalar_one()

        return await self._run("count favorites", work)

    async def delete(self, favorite_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            model = (await session.execute(_live().where(FavoriteModel.id == favorite_id))).scalar_one_or_none()
            if model is None:
                return False
            model.deleted_at = utc_now()
            return True

        return await self._run("delete favorite", work)

    async def delete_by_user_and_property(self, user_id: str, property_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            stmt = _live().where(FavoriteModel.user_id == user_id, FavoriteModel.property_id == property_id)
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                return False
            model.deleted_at = utc_now()
            return True

        return await self._run("delete favorite by user and property", work)
