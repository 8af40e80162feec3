import datetime
from typing import Callable

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from hc_registry.core.database.abstract_store import AbstractRegistryStore
from hc_registry.core.database.db import get_store
from hc_registry.core.exceptions import AuthError
from hc_registry.core.models.base import UserRoles
from hc_registry.logging_config import logger
from hc_registry.settings import settings as st
from hc_registry.user.models import User
from hc_registry.user.validation import (
    RegistryAction,
    validate_user_permission,
    validate_user_role,
)
from hc_registry.utils import utc_datetime_now

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/auth/login",
    auto_error=False,
)

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify that the provided password matches the hashed password."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash the provided password."""
    return pwd_context.hash(password)


def authenticate_user(
    email: str, password: str, store: AbstractRegistryStore
) -> User:
    """Authenticate a user by verifying their password.

    Unknown emails, wrong passwords and deactivated accounts all produce the
    same message so that the endpoint does not reveal which accounts exist.

    Args:
        email (str): The email address of the User to authenticate.
        password (str): The password to verify.
        store (AbstractRegistryStore): The registry store to read from.

    Returns:
        user: The User object matching the provided email, with its last login updated.

    Raises:
        AuthError: If the credentials do not match an active user.
    """
    user = store.get_user_by_email(email)

    if user is None or not user.is_active:
        logger.info(f"Login rejected for unknown or inactive account '{email}'")
        raise AuthError(INVALID_CREDENTIALS_MESSAGE)

    if not verify_password(password, user.hashed_password):
        logger.info(f"Login rejected for '{email}': incorrect password")
        raise AuthError(INVALID_CREDENTIALS_MESSAGE)

    return store.update_user(user, {"last_login": utc_datetime_now()})


def create_access_token(
    data: dict, expires_delta: datetime.timedelta | None = None
) -> str:
    """Create an access token with the provided data and expiration.

    Args:
        data (dict): The data to encode in the token.
        expires_delta (datetime.timedelta): The time until the token expires,
            defaults to ``ACCESS_TOKEN_EXPIRE_MINUTES``.

    Returns:
        encoded_jwt: The encoded JWT token.
    """
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = datetime.timedelta(minutes=st.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": utc_datetime_now() + expires_delta})
    encoded_jwt = jwt.encode(to_encode, st.JWT_SECRET_KEY, algorithm=st.JWT_ALGORITHM)
    return encoded_jwt


def create_user_token(user: User) -> str:
    return create_access_token(
        data={
            "sub": str(user.id),
            "walletAddress": user.wallet_address,
            "role": user.role.value,
        }
    )


def get_current_user(
    jwt_token: str | None = Depends(oauth2_scheme),
    store: AbstractRegistryStore = Depends(get_store),
) -> User:
    """Return the user identified by the bearer token.

    Raises:
        AuthError: If the token is missing, invalid or expired, or the user
            no longer exists or has been deactivated.
    """
    if not jwt_token:
        raise AuthError("Access denied. No token provided.")

    try:
        payload = jwt.decode(
            jwt_token,
            st.JWT_SECRET_KEY,
            algorithms=[st.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise AuthError("Token expired.")
    except JWTError:
        raise AuthError("Invalid token.")

    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        raise AuthError("Invalid token.")

    user = store.get_user(int(subject))
    if user is None or not user.is_active:
        raise AuthError("Invalid token or user not active.")

    return user


def require_roles(*roles: UserRoles) -> Callable[..., User]:
    """Build a dependency that only lets users holding one of ``roles`` through."""

    def _dependency(current_user: User = Depends(get_current_user)) -> User:
        validate_user_role(current_user, roles)
        return current_user

    return _dependency


def require_permission(action: RegistryAction) -> Callable[..., User]:
    """Build a dependency checking the role permission table for ``action``."""

    def _dependency(current_user: User = Depends(get_current_user)) -> User:
        validate_user_permission(current_user, action)
        return current_user

    return _dependency
