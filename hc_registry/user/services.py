from hc_registry.authentication.services import get_password_hash, verify_password
from hc_registry.core.database.abstract_store import AbstractRegistryStore, UserFilter
from hc_registry.core.exceptions import AuthError, NotFoundError, ValidationError
from hc_registry.core.models.base import UserRoles
from hc_registry.core.pagination import PageParams
from hc_registry.logging_config import logger
from hc_registry.user.models import User
from hc_registry.user.schemas import (
    ChangePasswordRequest,
    RoleStats,
    UserCreate,
    UserStatusUpdate,
    UserUpdate,
)
from hc_registry.utils import normalise_wallet_address

DUPLICATE_USER_MESSAGE = "User already exists with this email, username, or wallet address"

DEFAULT_USER_SETTINGS = {
    "notifications": {"email": True, "push": True},
    "privacy": {"publicProfile": False},
}


def _merge(current: dict, updates: dict) -> dict:
    merged = dict(current)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_user_by_id(user_id: int, store: AbstractRegistryStore) -> User:
    user = store.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def find_by_wallet(wallet_address: str, store: AbstractRegistryStore) -> User | None:
    return store.get_user_by_wallet(normalise_wallet_address(wallet_address))


def find_by_email(email: str, store: AbstractRegistryStore) -> User | None:
    return store.get_user_by_email(email)


def create_user(user_create: UserCreate, store: AbstractRegistryStore) -> User:
    """Register a new user.

    Email, username and wallet address must all be unused. The password is
    stored as a bcrypt hash.

    Raises:
        ValidationError: If any of the unique identity fields is taken.
    """
    if store.find_conflicting_user(
        user_create.email, user_create.username, user_create.wallet_address
    ):
        logger.info(f"Registration rejected for '{user_create.email}': duplicate identity")
        raise ValidationError(DUPLICATE_USER_MESSAGE)

    profile = (
        user_create.profile.model_dump(by_alias=True, exclude_none=True)
        if user_create.profile
        else {}
    )
    user = User(
        username=user_create.username,
        email=user_create.email,
        hashed_password=get_password_hash(user_create.password),
        wallet_address=user_create.wallet_address,
        role=user_create.role,
        organization=user_create.organization,
        profile=profile,
        settings=DEFAULT_USER_SETTINGS,
    )
    user = store.add_user(user)
    logger.info(f"Registered {user.role} user {user.id} ({user.email})")
    return user


def update_profile(
    user: User, user_update: UserUpdate, store: AbstractRegistryStore
) -> User:
    """Apply a partial profile update; nested profile and settings are merged."""
    changes: dict = {}

    if user_update.username is not None and user_update.username != user.username:
        conflict = store.find_conflicting_user("", user_update.username, "")
        if conflict is not None and conflict.id != user.id:
            raise ValidationError("Username already taken")
        changes["username"] = user_update.username

    if user_update.organization is not None:
        changes["organization"] = user_update.organization

    if user_update.profile is not None:
        changes["profile"] = _merge(
            user.profile or {},
            user_update.profile.model_dump(
                by_alias=True, exclude_unset=True, exclude_none=True
            ),
        )

    if user_update.settings is not None:
        changes["settings"] = _merge(
            user.settings or {},
            user_update.settings.model_dump(
                by_alias=True, exclude_unset=True, exclude_none=True
            ),
        )

    if not changes:
        return user

    return store.update_user(user, changes)


def change_password(
    user: User, request: ChangePasswordRequest, store: AbstractRegistryStore
) -> User:
    if not verify_password(request.current_password, user.hashed_password):
        raise AuthError("Current password is incorrect")

    user = store.update_user(
        user, {"hashed_password": get_password_hash(request.new_password)}
    )
    logger.info(f"Password changed for user {user.id}")
    return user


def list_active_users(store: AbstractRegistryStore) -> list[User]:
    users, _ = store.list_users(UserFilter(is_active=True))
    return users


def list_by_role(role: UserRoles, store: AbstractRegistryStore) -> list[User]:
    users, _ = store.list_users(UserFilter(role=role, is_active=True))
    return users


def list_users(
    filters: UserFilter, params: PageParams, store: AbstractRegistryStore
) -> tuple[list[User], int]:
    return store.list_users(filters, offset=params.offset, limit=params.limit)


def get_role_stats(store: AbstractRegistryStore) -> dict[UserRoles, RoleStats]:
    stats = {role: RoleStats(count=0, verified_count=0) for role in UserRoles}
    for role_count in store.count_users_by_role():
        stats[role_count.role] = RoleStats(
            count=role_count.count, verified_count=role_count.verified_count
        )
    return stats


def update_user_status(
    user_id: int, status_update: UserStatusUpdate, store: AbstractRegistryStore
) -> User:
    """Verify or (de)activate a user account. Users are never deleted."""
    user = get_user_by_id(user_id, store)

    changes = status_update.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("Provide isVerified and/or isActive")

    user = store.update_user(user, changes)
    logger.info(f"User {user_id} status updated: {changes}")
    return user
