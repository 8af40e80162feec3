import datetime
import re

from pydantic import Field, field_validator

from hc_registry.core.models.base import CamelModel, UserRoles
from hc_registry.core.pagination import UserPagination
from hc_registry.ledger.client import ADDRESS_PATTERN

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Address(CamelModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    zip_code: str | None = None


class UserProfile(CamelModel):
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = None
    address: Address | None = None
    website: str | None = None
    description: str | None = Field(default=None, max_length=1000)


class NotificationSettings(CamelModel):
    email: bool = True
    push: bool = True


class PrivacySettings(CamelModel):
    public_profile: bool = False


class UserSettings(CamelModel):
    notifications: NotificationSettings | None = None
    privacy: PrivacySettings | None = None


class UserBase(CamelModel):
    username: str = Field(min_length=3, max_length=50)
    email: str = Field(
        description="The email address of the User, used for authentication.",
    )
    wallet_address: str = Field(
        description="The ledger address credits are issued to and held under.",
    )
    role: UserRoles = Field(
        description="""The role of the User within the registry: producers generate
                       hydrogen, certifiers issue credits, consumers retire them and
                       regulators audit the registry.""",
    )
    organization: str = Field(min_length=1, max_length=200)

    @field_validator("username")
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r"^[A-Za-z0-9_.-]+$", v):
            raise ValueError(
                "Username may only contain letters, numbers, dots, dashes and underscores"
            )
        return v

    @field_validator("email")
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address.")
        return v

    @field_validator("wallet_address")
    def validate_wallet_address(cls, v: str) -> str:
        v = v.strip()
        if not ADDRESS_PATTERN.match(v):
            raise ValueError("Invalid wallet address")
        return v.lower()


class UserCreate(UserBase):
    password: str = Field(min_length=6)
    profile: UserProfile | None = None


class UserUpdate(CamelModel):
    username: str | None = Field(default=None, min_length=3, max_length=50)
    organization: str | None = Field(default=None, min_length=1, max_length=200)
    profile: UserProfile | None = None
    settings: UserSettings | None = None


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class UserStatusUpdate(CamelModel):
    is_verified: bool | None = None
    is_active: bool | None = None


class UserRead(CamelModel):
    id: int
    username: str
    email: str
    wallet_address: str
    role: UserRoles
    organization: str
    is_verified: bool
    is_active: bool
    profile: dict = Field(default_factory=dict)
    settings: dict = Field(default_factory=dict)
    last_login: datetime.datetime | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime


PUBLIC_PROFILE_FIELDS = ("firstName", "lastName", "website", "description")


class UserPublic(CamelModel):
    """Projection of a user that is safe to show to other registry members."""

    id: int
    username: str
    organization: str
    role: UserRoles
    is_verified: bool
    profile: dict = Field(default_factory=dict)
    created_at: datetime.datetime

    @field_validator("profile")
    def restrict_profile(cls, v: dict) -> dict:
        return {key: v[key] for key in PUBLIC_PROFILE_FIELDS if key in v}


class UserListResponse(CamelModel):
    users: list[UserRead]


class UserPublicListResponse(CamelModel):
    role: UserRoles
    users: list[UserPublic]


class RoleStats(CamelModel):
    count: int
    verified_count: int


class UserPageResponse(CamelModel):
    users: list[UserRead]
    pagination: UserPagination
    role_stats: dict[UserRoles, RoleStats]


class UserStatusResponse(CamelModel):
    message: str
    user: UserRead
