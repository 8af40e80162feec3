from pydantic import Field, field_validator

from hc_registry.core.models.base import CamelModel
from hc_registry.user.schemas import UserRead


class LoginRequest(CamelModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)

    @field_validator("email")
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()


class AuthResponse(CamelModel):
    message: str
    token: str
    token_type: str = "bearer"
    user: UserRead


class UserResponse(CamelModel):
    user: UserRead


class MessageResponse(CamelModel):
    message: str
