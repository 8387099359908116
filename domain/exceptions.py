"""
Domain Exceptions

Business rule violations raised by value objects, entities, services and
repositories. The API layer translates them into HTTP responses.
"""
from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for all domain errors"""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# ==================== VALIDATION ====================

class ValidationException(DomainException):
    """Malformed input caught at construction time"""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, self.error_code, details)
        self.field = field

    error_code = "VALIDATION_ERROR"


class InvalidDateRangeError(ValidationException):
    error_code = "INVALID_DATE_RANGE"


class InvalidMoneyError(ValidationException):
    error_code = "INVALID_MONEY"


class CurrencyMismatchError(InvalidMoneyError):
    error_code = "CURRENCY_MISMATCH"

    def __init__(self, left: str, right: str):
        super().__init__(
            f"Cannot operate on different currencies: {left} and {right}",
            details={"currencies": [left, right]},
        )


class InvalidGuestCountError(ValidationException):
    error_code = "INVALID_GUEST_COUNT"

    def __init__(self, guest_count: int, message: Optional[str] = None, maximum: Optional[int] = None):
        details: Dict[str, Any] = {"guest_count": guest_count}
        if maximum is not None:
            details["maximum"] = maximum
        super().__init__(message or f"Invalid guest count: {guest_count}", "guest_count", details)
        self.guest_count = guest_count


class InvalidAddressError(ValidationException):
    error_code = "INVALID_ADDRESS"


class InvalidEmailError(ValidationException):
    error_code = "INVALID_EMAIL"


class InvalidPhoneNumberError(ValidationException):
    error_code = "INVALID_PHONE_NUMBER"


# ==================== STATE MACHINE ====================

class InvalidStatusTransitionError(DomainException):
    """Requested status change is not an edge of the transition table"""

    def __init__(self, entity: str, current: Any, target: Any):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Cannot transition {entity} from {current_value} to {target_value}",
            "INVALID_STATUS_TRANSITION",
            {"entity": entity, "current": current_value, "target": target_value},
        )
        self.current = current
        self.target = target


# ==================== CONFLICTS ====================

class PropertyNotAvailableError(DomainException):
    """Requested dates collide with an existing booking"""

    def __init__(self, property_id: str, start_date: Any = None, end_date: Any = None):
        details: Dict[str, Any] = {"property_id": property_id}
        if start_date is not None:
            details["start_date"] = str(start_date)
            details["end_date"] = str(end_date)
        super().__init__(
            f"Property {property_id} is not available for the selected dates",
            "PROPERTY_NOT_AVAILABLE",
            details,
        )
        self.property_id = property_id


class DuplicateFavoriteError(DomainException):
    def __init__(self, user_id: str, property_id: str):
        super().__init__(
            f"Property {property_id} is already a favorite of user {user_id}",
            "DUPLICATE_FAVORITE",
            {"user_id": user_id, "property_id": property_id},
        )


class DuplicateEmailError(DomainException):
    def __init__(self, email: str):
        super().__init__(f"A user with email {email} already exists", "DUPLICATE_EMAIL", {"email": email})


# ==================== LOOKUP / RULES ====================

class EntityNotFoundError(DomainException):
    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} with ID {entity_id} not found",
            "ENTITY_NOT_FOUND",
            {"entity_type": entity_type, "entity_id": str(entity_id)},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ForbiddenActionError(DomainException):
    """Acting user is not a party allowed to perform the action"""

    def __init__(self, actor_id: str, action: str):
        super().__init__(
            f"User {actor_id} is not allowed to {action}",
            "FORBIDDEN_ACTION",
            {"actor_id": actor_id, "action": action},
        )


class BusinessRuleViolationError(DomainException):
    def __init__(self, rule: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["rule"] = rule
        super().__init__(message or f"Business rule violated: {rule}", "BUSINESS_RULE_VIOLATION", details)
        self.rule = rule


class PropertyNotBookableError(BusinessRuleViolationError):
    def __init__(self, property_id: str, status: Any):
        super().__init__(
            "property_must_be_published",
            f"Property {property_id} is not open for booking (status {getattr(status, 'value', status)})",
            {"property_id": property_id},
        )


# ==================== PERSISTENCE ====================

class PersistenceError(DomainException):
    """Storage failure translated out of the driver's exception hierarchy"""

    def __init__(self, operation: str, message: Optional[str] = None):
        super().__init__(message or f"Storage failure during {operation}", "PERSISTENCE_ERROR", {"operation": operation})
        self.operation = operation


class TransientPersistenceError(PersistenceError):
    """Timeout or dropped connection; safe to retry once"""