from typing import Annotated

from fastapi import APIRouter, Depends, status

from hc_registry.authentication import services
from hc_registry.authentication.schemas import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    UserResponse,
)
from hc_registry.authentication.services import get_current_user, require_permission
from hc_registry.core.database.abstract_store import AbstractRegistryStore
from hc_registry.core.database.db import get_store
from hc_registry.core.models.base import UserRoles
from hc_registry.user import services as user_services
from hc_registry.user.models import User
from hc_registry.user.schemas import (
    ChangePasswordRequest,
    UserCreate,
    UserListResponse,
    UserPublic,
    UserPublicListResponse,
    UserRead,
    UserUpdate,
)
from hc_registry.user.validation import RegistryAction

router = APIRouter(tags=["Authentication"])

LoggedInUser = Annotated[User, Depends(get_current_user)]


@router.post(
    "/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED
)
def register(
    user_create: UserCreate,
    store: AbstractRegistryStore = Depends(get_store),
):
    """Register a new user and return an access token for them.

    Email, username and wallet address must all be unique across the registry.
    """
    user = user_services.create_user(user_create, store)
    return AuthResponse(
        message="User registered successfully",
        token=services.create_user_token(user),
        user=UserRead.model_validate(user),
    )


@router.post("/login", response_model=AuthResponse)
def login(
    login_request: LoginRequest,
    store: AbstractRegistryStore = Depends(get_store),
):
    """Exchange an email and password for a bearer token.

    Raises:
        AuthError: If the credentials are invalid or the account is deactivated.
    """
    user = services.authenticate_user(
        login_request.email, login_request.password, store
    )
    return AuthResponse(
        message="Login successful",
        token=services.create_user_token(user),
        user=UserRead.model_validate(user),
    )


@router.get("/me", response_model=UserResponse)
def read_current_user(current_user: LoggedInUser):
    return UserResponse(user=UserRead.model_validate(current_user))


@router.put("/profile", response_model=UserResponse)
def update_profile(
    user_update: UserUpdate,
    current_user: LoggedInUser,
    store: AbstractRegistryStore = Depends(get_store),
):
    user = user_services.update_profile(current_user, user_update, store)
    return UserResponse(user=UserRead.model_validate(user))


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    request: ChangePasswordRequest,
    current_user: LoggedInUser,
    store: AbstractRegistryStore = Depends(get_store),
):
    user_services.change_password(current_user, request, store)
    return MessageResponse(message="Password changed successfully")


@router.get("/users", response_model=UserListResponse)
def list_users(
    current_user: User = Depends(require_permission(RegistryAction.MANAGE_USERS)),
    store: AbstractRegistryStore = Depends(get_store),
):
    """List every active user. Regulators only."""
    users = user_services.list_active_users(store)
    return UserListResponse(users=[UserRead.model_validate(u) for u in users])


@router.get("/users/{role}", response_model=UserPublicListResponse)
def list_users_by_role(
    role: UserRoles,
    current_user: LoggedInUser,
    store: AbstractRegistryStore = Depends(get_store),
):
    """Public profiles of the active users holding ``role``, e.g. to pick a transfer recipient."""
    users = user_services.list_by_role(role, store)
    return UserPublicListResponse(
        role=role, users=[UserPublic.model_validate(u) for u in users]
    )
