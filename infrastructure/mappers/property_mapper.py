"""
Property Mapper

Converts between ``properties`` rows and Property entities. Address and house
rules are flattened into columns; amenities and images are JSON lists.
"""
from typing import Any, Dict, Iterable, List

from domain.entities import Property
from domain.enums import PropertyStatus, PropertyType
from domain.value_objects import Address, Amenity, Money, PropertyRules
from infrastructure.mappers.base import as_utc, ensure_exhaustive
from infrastructure.persistence.models import PropertyStatusColumn, PropertyTypeColumn

# PENDING_REVIEW has no domain counterpart; such listings are drafts
STATUS_TO_DOMAIN: Dict[PropertyStatusColumn, PropertyStatus] = ensure_exhaustive(
    {
        PropertyStatusColumn.DRAFT: PropertyStatus.DRAFT,
        PropertyStatusColumn.PENDING_REVIEW: PropertyStatus.DRAFT,
        PropertyStatusColumn.PUBLISHED: PropertyStatus.PUBLISHED,
        PropertyStatusColumn.UNLISTED: PropertyStatus.UNLISTED,
        PropertyStatusColumn.SUSPENDED: PropertyStatus.SUSPENDED,
    },
    PropertyStatusColumn,
    PropertyStatus,
)
STATUS_TO_STORAGE: Dict[PropertyStatus, PropertyStatusColumn] = ensure_exhaustive(
    {
        PropertyStatus.DRAFT: PropertyStatusColumn.DRAFT,
        PropertyStatus.PUBLISHED: PropertyStatusColumn.PUBLISHED,
        PropertyStatus.UNLISTED: PropertyStatusColumn.UNLISTED,
        PropertyStatus.SUSPENDED: PropertyStatusColumn.SUSPENDED,
    },
    PropertyStatus,
    PropertyStatusColumn,
    onto=False,
)

TYPE_TO_DOMAIN: Dict[PropertyTypeColumn, PropertyType] = ensure_exhaustive(
    {column: PropertyType[column.name] for column in PropertyTypeColumn},
    PropertyTypeColumn,
    PropertyType,
)
TYPE_TO_STORAGE: Dict[PropertyType, PropertyTypeColumn] = ensure_exhaustive(
    {domain: column for column, domain in TYPE_TO_DOMAIN.items()},
    PropertyType,
    PropertyTypeColumn,
)


class PropertyMapper:

    @staticmethod
    def to_domain(record: Any) -> Property:
        currency = record.currency
        return Property.reconstitute(
            id=record.id,
            host_id=record.host_id,
            title=record.title,
            description=record.description or "",
            property_type=TYPE_TO_DOMAIN[PropertyTypeColumn(record.property_type)],
            status=STATUS_TO_DOMAIN[PropertyStatusColumn(record.status)],
            address=Address(
                street=record.street,
                city=record.city,
                state=record.state,
                country=record.country,
                postal_code=record.postal_code,
                latitude=record.latitude,
                longitude=record.longitude,
            ),
            base_price=Money(amount=record.base_price, currency=currency),
            cleaning_fee=(
                Money(amount=record.cleaning_fee, currency=currency) if record.cleaning_fee is not None else None
            ),
            max_guests=record.max_guests,
            bedrooms=record.bedrooms,
            bathrooms=record.bathrooms,
            beds=record.beds,
            amenities=[Amenity(**item) for item in record.amenities or []],
            rules=PropertyRules(
                check_in_time=record.check_in_time,
                check_out_time=record.check_out_time,
                pets_allowed=record.pets_allowed,
                smoking_allowed=record.smoking_allowed,
                events_allowed=record.events_allowed,
            ),
            images=list(record.images or []),
            minimum_stay=record.minimum_stay,
            maximum_stay=record.maximum_stay,
            instant_booking=record.instant_booking,
            suspension_reason=record.suspension_reason,
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
            published_at=as_utc(record.published_at),
        )

    @staticmethod
    def to_persistence(property: Property) -> Dict[str, Any]:
        address = property.address
        rules = property.rules
        return {
            "id": property.id,
            "host_id": property.host_id,
            "title": property.title,
            "description": property.description,
            "property_type": TYPE_TO_STORAGE[property.property_type],
            "status": STATUS_TO_STORAGE[property.status],
            "is_active": property.is_available_for_booking(),
            "street": address.street,
            "city": address.city,
            "state": address.state,
            "country": address.country,
            "postal_code": address.postal_code,
            "latitude": address.latitude,
            "longitude": address.longitude,
            "base_price": property.base_price.amount,
            "cleaning_fee": property.cleaning_fee.amount if property.cleaning_fee else None,
            "currency": property.base_price.currency,
            "max_guests": property.max_guests,
            "bedrooms": property.bedrooms,
            "bathrooms": property.bathrooms,
            "beds": property.beds,
            "amenities": [amenity.model_dump(mode="json") for amenity in property.amenities],
            "images": list(property.images),
            "check_in_time": rules.check_in_time,
            "check_out_time": rules.check_out_time,
            "pets_allowed": rules.pets_allowed,
            "smoking_allowed": rules.smoking_allowed,
            "events_allowed": rules.events_allowed,
            "minimum_stay": property.minimum_stay,
            "maximum_stay": property.maximum_stay,
            "instant_booking": property.instant_booking,
            "suspension_reason": property.suspension_reason,
            "created_at": property.created_at,
            "updated_at": property.updated_at,
            "published_at": property.published_at,
        }

    @staticmethod
    def to_domain_list(records: Iterable[Any]) -> List[Property]:
        return [PropertyMapper.to_domain(record) for record in records]
