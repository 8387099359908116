"""
Dependency container

Owns the one engine and session factory of a process and builds repositories
and services on first use. Build one per application (or per test); nothing
here is module-global.
"""
import logging
from typing import Optional

from application.services import BookingService, FavoriteService, PropertyService, UserService
from infrastructure.config import Settings, get_settings
from infrastructure.persistence.database import create_database_engine, create_schema, create_session_factory
from infrastructure.repositories.booking_repository import SQLAlchemyBookingRepository
from infrastructure.repositories.favorite_repository import SQLAlchemyFavoriteRepository
from infrastructure.repositories.property_repository import SQLAlchemyPropertyRepository
from infrastructure.repositories.user_repository import SQLAlchemyUserRepository

logger = logging.getLogger(__name__)


class Container:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.engine = create_database_engine(self.settings)
        self.session_factory = create_session_factory(self.engine)

        self._booking_repository: Optional[SQLAlchemyBookingRepository] = None
        self._property_repository: Optional[SQLAlchemyPropertyRepository] = None
        self._user_repository: Optional[SQLAlchemyUserRepository] = None
        self._favorite_repository: Optional[SQLAlchemyFavoriteRepository] = None

        self._booking_service: Optional[BookingService] = None
        self._property_service: Optional[PropertyService] = None
        self._user_service: Optional[UserService] = None
        self._favorite_service: Optional[FavoriteService] = None

        logger.info("Container initialized")

    # ==================== REPOSITORIES ====================
    def get_booking_repository(self) -> SQLAlchemyBookingRepository:
        if self._booking_repository is None:
            self._booking_repository = SQLAlchemyBookingRepository(
                self.session_factory,
                query_timeout=self.settings.DB_QUERY_TIMEOUT,
                service_fee_rate=self.settings.SERVICE_FEE_RATE,
            )
        return self._booking_repository

    def get_property_repository(self) -> SQLAlchemyPropertyRepository:
        if self._property_repository is None:
            self._property_repository = SQLAlchemyPropertyRepository(
                self.session_factory, query_timeout=self.settings.DB_QUERY_TIMEOUT
            )
        return self._property_repository

    def get_user_repository(self) -> SQLAlchemyUserRepository:
        if self._user_repository is None:
            self._user_repository = SQLAlchemyUserRepository(
                self.session_factory, query_timeout=self.settings.DB_QUERY_TIMEOUT
            )
        return self._user_repository

    def get_favorite_repository(self) -> SQLAlchemyFavoriteRepository:
        if self._favorite_repository is None:
            self._favorite_repository = SQLAlchemyFavoriteRepository(
                self.session_factory, query_timeout=self.settings.DB_QUERY_TIMEOUT
            )
        return self._favorite_repository

    # ==================== SERVICES ====================
    def get_booking_service(self) -> BookingService:
        if self._booking_service is None:
            self._booking_service = BookingService(self.get_booking_repository(), self.get_property_repository())
        return self._booking_service

    def get_property_service(self) -> PropertyService:
        if self._property_service is None:
            self._property_service = PropertyService(
                self.get_property_repository(), default_currency=self.settings.DEFAULT_CURRENCY
            )
        return self._property_service

    def get_user_service(self) -> UserService:
        if self._user_service is None:
            self._user_service = UserService(self.get_user_repository())
        return self._user_service

    def get_favorite_service(self) -> FavoriteService:
        if self._favorite_service is None:
            self._favorite_service = FavoriteService(self.get_favorite_repository(), self.get_property_repository())
        return self._favorite_service

    # ==================== LIFECYCLE ====================
    async def init_schema(self) -> None:
        await create_schema(self.engine)

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Container disposed")
