"""Domain Value Objects"""
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from domain.enums import AmenityCategory
from domain.exceptions import (
    CurrencyMismatchError,
    InvalidAddressError,
    InvalidDateRangeError,
    InvalidEmailError,
    InvalidMoneyError,
    InvalidPhoneNumberError,
    ValidationException,
)

DEFAULT_CURRENCY = "QAR"
CENT = Decimal("0.01")

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

DateLike = Union[date, datetime, str]


def describe_validation_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    loc = ".".join(str(part) for part in errors[0]["loc"])
    return f"{loc}: {errors[0]['msg']}" if loc else errors[0]["msg"]


class DateRange(BaseModel):
    """Value Object for a stay, half-open: [start_date, end_date)

    The end date is the checkout day and is not occupied, so another stay
    may start on it.
    """
    model_config = ConfigDict(frozen=True, revalidate_instances="always")

    start_date: date
    end_date: date

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def truncate_datetimes(cls, v):
        if isinstance(v, datetime):
            return v.date()
        return v

    @model_validator(mode="after")
    def end_after_start(self) -> "DateRange":
        if self.end_date <= self.start_date:
            raise InvalidDateRangeError(
                "End date must be after start date",
                field="end_date",
                details={"start_date": self.start_date.isoformat(), "end_date": self.end_date.isoformat()},
            )
        return self

    @classmethod
    def create(cls, start_date: DateLike, end_date: DateLike) -> "DateRange":
        """Build a range, reporting any malformed input as InvalidDateRangeError"""
        try:
            return cls(start_date=start_date, end_date=end_date)
        except ValidationError as e:
            raise InvalidDateRangeError(f"Invalid date range: {describe_validation_error(e)}") from e

    @property
    def number_of_nights(self) -> int:
        return (self.end_date - self.start_date).days

    def nights(self) -> Iterator[date]:
        """Yield every occupied night (the checkout day excluded)"""
        for offset in range(self.number_of_nights):
            yield self.start_date + timedelta(days=offset)

    def overlaps(self, other: "DateRange") -> bool:
        return self.start_date < other.end_date and other.start_date < self.end_date

    def contains(self, day: date) -> bool:
        return self.start_date <= day < self.end_date

    def contains_range(self, other: "DateRange") -> bool:
        return self.start_date <= other.start_date and other.end_date <= self.end_date

    def is_in_past(self, today: Optional[date] = None) -> bool:
        return self.end_date <= (today or date.today())

    def is_in_future(self, today: Optional[date] = None) -> bool:
        return self.start_date > (today or date.today())

    def is_current(self, today: Optional[date] = None) -> bool:
        return self.contains(today or date.today())

    def __str__(self) -> str:
        return f"{self.start_date.isoformat()} - {self.end_date.isoformat()}"


class Money(BaseModel):
    """Value Object for monetary amounts, fixed to two decimal places"""
    model_config = ConfigDict(frozen=True, revalidate_instances="always")

    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    @field_validator("amount", mode="before")
    @classmethod
    def normalize_amount(cls, v):
        if isinstance(v, bool):
            raise InvalidMoneyError("Amount must be numeric", field="amount")
        try:
            amount = v if isinstance(v, Decimal) else Decimal(str(v))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidMoneyError(f"Invalid amount: {v!r}", field="amount")
        if not amount.is_finite():
            raise InvalidMoneyError("Amount must be a finite number", field="amount")
        if amount < 0:
            raise InvalidMoneyError("Amount cannot be negative", field="amount", details={"amount": str(amount)})
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, v):
        code = str(v or "").strip().upper()
        if not _CURRENCY_PATTERN.match(code):
            raise InvalidMoneyError(f"Invalid currency code: {v!r}", field="currency")
        return code

    @classmethod
    def create(cls, amount, currency: str = DEFAULT_CURRENCY) -> "Money":
        try:
            return cls(amount=amount, currency=currency)
        except ValidationError as e:
            raise InvalidMoneyError(f"Invalid money: {describe_validation_error(e)}") from e

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> "Money":
        return cls(amount=Decimal("0"), currency=currency)

    # ==================== ARITHMETIC ====================
    def add(self, other: "Money") -> "Money":
        self._ensure_same_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def subtract(self, other: "Money") -> "Money":
        self._ensure_same_currency(other)
        result = self.amount - other.amount
        if result < 0:
            raise InvalidMoneyError(
                "Resulting amount cannot be negative",
                details={"left": str(self.amount), "right": str(other.amount)},
            )
        return Money(amount=result, currency=self.currency)

    def multiply(self, factor: Union[int, Decimal, str]) -> "Money":
        multiplier = factor if isinstance(factor, Decimal) else Decimal(str(factor))
        if multiplier < 0:
            raise InvalidMoneyError("Multiplier cannot be negative", details={"factor": str(multiplier)})
        return Money(amount=self.amount * multiplier, currency=self.currency)

    def percentage(self, percent: Union[int, Decimal]) -> "Money":
        return self.multiply(Decimal(str(percent)) / Decimal("100"))

    # ==================== COMPARISON ====================
    def greater_than(self, other: "Money") -> bool:
        self._ensure_same_currency(other)
        return self.amount > other.amount

    def less_than(self, other: "Money") -> bool:
        self._ensure_same_currency(other)
        return self.amount < other.amount

    def is_zero(self) -> bool:
        return self.amount == 0

    def _ensure_same_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


class Address(BaseModel):
    """Value Object for a postal address with optional coordinates"""
    model_config = ConfigDict(frozen=True)

    street: str
    city: str
    state: str = ""
    country: str
    postal_code: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("street", "city", "state", "country", "postal_code", mode="before")
    @classmethod
    def strip_text(cls, v):
        return (v or "").strip() if isinstance(v, str) or v is None else v

    @model_validator(mode="after")
    def check_required_parts(self) -> "Address":
        for name in ("street", "city", "country"):
            if not getattr(self, name):
                raise InvalidAddressError(f"{name.capitalize()} is required", field=name)
        if (self.latitude is None) != (self.longitude is None):
            raise InvalidAddressError("Latitude and longitude must be given together", field="latitude")
        if self.latitude is not None and not -90 <= self.latitude <= 90:
            raise InvalidAddressError("Invalid latitude", field="latitude")
        if self.longitude is not None and not -180 <= self.longitude <= 180:
            raise InvalidAddressError("Invalid longitude", field="longitude")
        return self

    @classmethod
    def create(cls, **parts) -> "Address":
        try:
            return cls(**parts)
        except ValidationError as e:
            raise InvalidAddressError(f"Invalid address: {describe_validation_error(e)}") from e

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None

    def format(self, style: str = "full") -> str:
        if style == "short":
            return f"{self.city}, {self.country}"
        parts = [self.street, self.city, self.state, self.postal_code, self.country]
        return ", ".join(part for part in parts if part)

    def __str__(self) -> str:
        return self.format()


class Email(BaseModel):
    """Value Object for an e-mail address (stored lower-cased)"""
    model_config = ConfigDict(frozen=True)

    value: str

    @field_validator("value", mode="before")
    @classmethod
    def normalize(cls, v):
        address = str(v or "").strip().lower()
        if not _EMAIL_PATTERN.match(address):
            raise InvalidEmailError(f"Invalid email address: {v!r}", field="email")
        return address

    @classmethod
    def create(cls, value: str) -> "Email":
        return cls(value=value)

    @property
    def domain(self) -> str:
        return self.value.split("@", 1)[1]

    def __str__(self) -> str:
        return self.value


class PhoneNumber(BaseModel):
    """Value Object for a phone number split into country calling code and national number"""
    model_config = ConfigDict(frozen=True)

    number: str
    country_code: str

    @field_validator("number", "country_code", mode="before")
    @classmethod
    def digits_only(cls, v):
        return re.sub(r"\D", "", str(v or ""))

    @model_validator(mode="after")
    def check_lengths(self) -> "PhoneNumber":
        if not 1 <= len(self.country_code) <= 3:
            raise InvalidPhoneNumberError("Country code must have 1 to 3 digits", field="country_code")
        if len(self.number) < 4 or len(self.country_code) + len(self.number) > 15:
            raise InvalidPhoneNumberError("Phone number has an invalid length", field="number")
        return self

    @classmethod
    def create(cls, number: str, country_code: str) -> "PhoneNumber":
        return cls(number=number, country_code=country_code)

    @property
    def e164(self) -> str:
        return f"+{self.country_code}{self.number}"

    def __str__(self) -> str:
        return self.e164


class Amenity(BaseModel):
    """Value Object for a listed amenity"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: AmenityCategory = AmenityCategory.FEATURE


class PropertyRules(BaseModel):
    """Value Object for house rules"""
    model_config = ConfigDict(frozen=True)

    check_in_time: str = "15:00"
    check_out_time: str = "11:00"
    pets_allowed: bool = False
    smoking_allowed: bool = False
    events_allowed: bool = False

    @field_validator("check_in_time", "check_out_time")
    @classmethod
    def hh_mm(cls, v, info):
        if not _TIME_PATTERN.match(v):
            raise ValidationException(f"Time must be HH:MM, got {v!r}", field=info.field_name)
        return v


class RefundQuote(BaseModel):
    """Refund owed to the guest on cancellation"""
    model_config = ConfigDict(frozen=True)

    refund: Money
    percentage: int


class PriceBreakdown(BaseModel):
    """Price of a stay at a property"""
    model_config = ConfigDict(frozen=True)

    number_of_nights: int
    price_per_night: Money
    nights_price: Money
    cleaning_fee: Money
    total_price: Money
