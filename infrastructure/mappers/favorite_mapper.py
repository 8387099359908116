"""Favorite Mapper"""
from typing import Any, Dict, Iterable, List

from domain.entities import Favorite
from infrastructure.mappers.base import as_utc


class FavoriteMapper:

    @staticmethod
    def to_domain(record: Any) -> Favorite:
        return Favorite.reconstitute(
            id=record.id,
            user_id=record.user_id,
            property_id=record.property_id,
            notes=record.notes,
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
        )

    @staticmethod
    def to_persistence(favorite: Favorite) -> Dict[str, Any]:
        return {
            "id": favorite.id,
            "user_id": favorite.user_id,
            "property_id": favorite.property_id,
            "notes": favorite.notes,
            "created_at": favorite.created_at,
            "updated_at": favorite.updated_at,
        }

    @staticmethod
    def to_domain_list(records: Iterable[Any]) -> List[Favorite]:
        return [FavoriteMapper.to_domain(record) for record in records]
