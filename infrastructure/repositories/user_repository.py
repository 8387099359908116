"""SQLAlchemy implementation of UserRepository"""
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import User, utc_now
from domain.exceptions import DuplicateEmailError, EntityNotFoundError
from domain.repositories import UserRepository
from infrastructure.mappers.user_mapper import UserMapper
from infrastructure.persistence.models import UserModel
from infrastructure.repositories.base import SQLAlchemyRepository

logger = logging.getLogger(__name__)


def _normalize(email: str) -> str:
    return email.strip().lower()


class SQLAlchemyUserRepository(SQLAlchemyRepository, UserRepository):

    async def create(self, user: User) -> User:
        async def work(session: AsyncSession) -> User:
            session.add(UserModel(**UserMapper.to_persistence(user)))
            try:
                await session.flush()
            except IntegrityError as e:
                raise DuplicateEmailError(user.email.value) from e
            return user

        created = await self._run("create user", work)
        logger.info(f"User {user.id} registered")
        return created

    async def update(self, user: User) -> User:
        async def work(session: AsyncSession) -> User:
            model = await session.get(UserModel, user.id)
            if model is None or model.deleted_at is not None:
                raise EntityNotFoundError("User", user.id)
            for column, value in UserMapper.to_persistence(user).items():
                if column not in ("id", "created_at"):
                    setattr(model, column, value)
            try:
                await session.flush()
            except IntegrityError as e:
                raise DuplicateEmailError(user.email.value) from e
            return user

        return await self._run("update user", work)

    async def find_by_id(self, user_id: str) -> Optional[User]:
        async def work(session: AsyncSession) -> Optional[User]:
            stmt = select(UserModel).where(UserModel.id == user_id, UserModel.deleted_at.is_(None))
            model = (await session.execute(stmt)).scalar_one_or_none()
            return UserMapper.to_domain(model) if model is not None else None

        return await self._run("find user", work)

    async def find_by_email(self, email: str) -> Optional[User]:
        async def work(session: AsyncSession) -> Optional[User]:
            stmt = select(UserModel).where(UserModel.email == _normalize(email), UserModel.deleted_at.is_(None))
            model = (await session.execute(stmt)).scalar_one_or_none()
            return UserMapper.to_domain(model) if model is not None else None

        return await self._run("find user by email", work)

    async def exists_by_email(self, email: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            stmt = select(func.count()).select_from(UserModel).where(
                UserModel.email == _normalize(email), UserModel.deleted_at.is_(None)
            )
            return (await session.execute(stmt)).scalar_one() > 0

        return await self._run("check email", work)

    async def delete(self, user_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            model = await session.get(UserModel, user_id)
            if model is None or model.deleted_at is not None:
                return False
            model.deleted_at = utc_now()
            return True

        deleted = await self._run("delete user", work)
        if deleted:
            logger.info(f"User {user_id} soft-deleted")
        return deleted
