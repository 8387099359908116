"""
User Mapper

Roles are stored as ``is_host`` / ``is_admin`` flags and verification as
cumulative flags; the domain keeps them as a role list and a single level.
"""
from typing import Any, Dict, Iterable, List

from domain.entities import User
from domain.enums import UserRole, UserStatus, VerificationStatus
from domain.value_objects import Email, PhoneNumber
from infrastructure.mappers.base import as_utc, ensure_exhaustive
from infrastructure.persistence.models import AccountStatusColumn

STATUS_TO_DOMAIN: Dict[AccountStatusColumn, UserStatus] = ensure_exhaustive(
    {
        AccountStatusColumn.ACTIVE: UserStatus.ACTIVE,
        AccountStatusColumn.DEACTIVATED: UserStatus.INACTIVE,
        AccountStatusColumn.SUSPENDED: UserStatus.SUSPENDED,
        AccountStatusColumn.BANNED: UserStatus.BANNED,
    },
    AccountStatusColumn,
    UserStatus,
)
STATUS_TO_STORAGE: Dict[UserStatus, AccountStatusColumn] = ensure_exhaustive(
    {domain: column for column, domain in STATUS_TO_DOMAIN.items()},
    UserStatus,
    AccountStatusColumn,
)

# flags set for each level: (email_verified, phone_verified, id_verified, kyc_completed)
VERIFICATION_FLAGS: Dict[VerificationStatus, tuple] = ensure_exhaustive(
    {
        VerificationStatus.UNVERIFIED: (False, False, False, False),
        VerificationStatus.EMAIL_VERIFIED: (True, False, False, False),
        VerificationStatus.PHONE_VERIFIED: (True, True, False, False),
        VerificationStatus.ID_VERIFIED: (True, True, True, False),
        VerificationStatus.FULLY_VERIFIED: (True, True, True, True),
    },
    VerificationStatus,
)


def _verification_from_flags(record: Any) -> VerificationStatus:
    if record.kyc_completed:
        return VerificationStatus.FULLY_VERIFIED
    if record.id_verified:
        return VerificationStatus.ID_VERIFIED
    if record.email_verified and record.phone_verified:
        return VerificationStatus.PHONE_VERIFIED
    if record.email_verified:
        return VerificationStatus.EMAIL_VERIFIED
    return VerificationStatus.UNVERIFIED


class UserMapper:

    @staticmethod
    def to_domain(record: Any) -> User:
        roles = [UserRole.GUEST]
        if record.is_host:
            roles.append(UserRole.HOST)
        if record.is_admin:
            roles.append(UserRole.ADMIN)

        phone_number = None
        if record.phone and record.country_code:
            phone_number = PhoneNumber(number=record.phone, country_code=record.country_code)

        return User.reconstitute(
            id=record.id,
            email=Email(value=record.email),
            phone_number=phone_number,
            first_name=record.first_name,
            last_name=record.last_name,
            roles=roles,
            status=STATUS_TO_DOMAIN[AccountStatusColumn(record.account_status)],
            verification_status=_verification_from_flags(record),
            last_login_at=as_utc(record.last_login_at),
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
        )

    @staticmethod
    def to_persistence(user: User) -> Dict[str, Any]:
        email_verified, phone_verified, id_verified, kyc_completed = VERIFICATION_FLAGS[user.verification_status]
        return {
            "id": user.id,
            "email": user.email.value,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "phone": user.phone_number.number if user.phone_number else None,
            "country_code": user.phone_number.country_code if user.phone_number else None,
            "is_host": user.is_host(),
            "is_admin": user.is_admin(),
            "account_status": STATUS_TO_STORAGE[user.status],
            "email_verified": email_verified,
            "phone_verified": phone_verified,
            "id_verified": id_verified,
            "kyc_completed": kyc_completed,
            "last_login_at": user.last_login_at,
            "created_at": user.created_at,
            "updated_at": user.updated_at,
        }

    @staticmethod
    def to_domain_list(records: Iterable[Any]) -> List[User]:
        return [UserMapper.to_domain(record) for record in records]
