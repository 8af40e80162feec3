from enum import Enum
from typing import Iterable

from hc_registry.core.exceptions import AuthorizationError
from hc_registry.core.models.base import UserRoles
from hc_registry.user.models import User


class RegistryAction(str, Enum):
    ISSUE_CREDIT = "ISSUE_CREDIT"
    TRANSFER_CREDIT = "TRANSFER_CREDIT"
    RETIRE_CREDIT = "RETIRE_CREDIT"
    LIST_PRODUCED_CREDITS = "LIST_PRODUCED_CREDITS"
    AUDIT_CREDITS = "AUDIT_CREDITS"
    VERIFY_CREDIT = "VERIFY_CREDIT"
    MANAGE_USERS = "MANAGE_USERS"
    RECONCILE_LEDGER = "RECONCILE_LEDGER"
    CHANGE_LOG_LEVEL = "CHANGE_LOG_LEVEL"


ROLE_PERMISSIONS: dict[UserRoles, frozenset[RegistryAction]] = {
    UserRoles.PRODUCER: frozenset(
        {RegistryAction.TRANSFER_CREDIT, RegistryAction.LIST_PRODUCED_CREDITS}
    ),
    UserRoles.CERTIFIER: frozenset(
        {
            RegistryAction.ISSUE_CREDIT,
            RegistryAction.TRANSFER_CREDIT,
            RegistryAction.AUDIT_CREDITS,
            RegistryAction.VERIFY_CREDIT,
        }
    ),
    UserRoles.CONSUMER: frozenset(
        {RegistryAction.TRANSFER_CREDIT, RegistryAction.RETIRE_CREDIT}
    ),
    UserRoles.REGULATOR: frozenset(
        {
            RegistryAction.TRANSFER_CREDIT,
            RegistryAction.AUDIT_CREDITS,
            RegistryAction.VERIFY_CREDIT,
            RegistryAction.MANAGE_USERS,
            RegistryAction.RECONCILE_LEDGER,
            RegistryAction.CHANGE_LOG_LEVEL,
        }
    ),
}

_missing_roles = set(UserRoles) - set(ROLE_PERMISSIONS)
if _missing_roles:
    raise RuntimeError(f"No permissions defined for roles: {sorted(_missing_roles)}")


def roles_allowed(action: RegistryAction) -> list[UserRoles]:
    return [role for role in UserRoles if action in ROLE_PERMISSIONS[role]]


def validate_user_role(user: User, required_roles: UserRoles | Iterable[UserRoles]):
    """
    Validate that the user holds one of the roles required to perform the action.

    Args:
        user (User): The user to validate
        required_roles (UserRoles | Iterable[UserRoles]): The accepted roles

    Raises:
        AuthorizationError: If the user's role is not among the accepted roles.
    """
    if isinstance(required_roles, UserRoles):
        required_roles = [required_roles]
    required_roles = list(required_roles)

    if user.role not in required_roles:
        msg = "Access denied. Insufficient permissions."
        raise AuthorizationError(
            msg,
            details=[
                {
                    "required": [str(role) for role in required_roles],
                    "current": str(user.role),
                }
            ],
        )


def validate_user_permission(user: User, action: RegistryAction):
    """
    Validate that the user's role grants the requested action.

    Raises:
        AuthorizationError: If the role table does not grant the action.
    """
    validate_user_role(user, roles_allowed(action))
