"""API Dependencies - service lookup and acting user"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from application.services import BookingService, PropertyService
from infrastructure.container import Container


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_booking_service(container: Container = Depends(get_container)) -> BookingService:
    return container.get_booking_service()


def get_property_service(container: Container = Depends(get_container)) -> PropertyService:
    return container.get_property_service()


async def get_optional_actor(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Id of the acting user; identity is asserted upstream and passed as an opaque header"""
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


async def get_current_actor(actor_id: Optional[str] = Depends(get_optional_actor)) -> str:
    if actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    return actor_id
