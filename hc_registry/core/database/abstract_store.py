"""Storage interface shared by the SQL and in-memory registry backends.

Services only ever talk to an ``AbstractRegistryStore``. Credits are written
with an optimistic version check: ``save_credit`` succeeds only when the stored
``version`` still equals the version the caller read.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from hc_registry.core.models.base import (
    CreditStatus,
    LedgerIntentStatus,
    RenewableSourceType,
    UserRoles,
)
from hc_registry.credit.models import Credit, LedgerIntent
from hc_registry.user.models import User


class CreditFilter(BaseModel):
    owner_id: int | None = None
    producer_id: int | None = None
    certifier_id: int | None = None
    status: CreditStatus | None = None
    renewable_source_type: RenewableSourceType | None = None
    is_retired: bool | None = None


class UserFilter(BaseModel):
    role: UserRoles | None = None
    is_verified: bool | None = None
    is_active: bool | None = None


class CreditAggregate(BaseModel):
    """One row of credit aggregation, ``key`` is None for the ungrouped total."""

    key: str | None = None
    credit_count: int = 0
    total_hydrogen: int = 0
    total_credit_amount: int = 0
    active_credits: int = 0
    active_balance: int = 0
    retired_credits: int = 0
    retired_credit_amount: int = 0
    verified_credits: int = 0


class RoleCount(BaseModel):
    role: UserRoles
    count: int = 0
    verified_count: int = 0


CREDIT_GROUP_COLUMNS = ("renewable_source_type", "status")


class AbstractRegistryStore(ABC):
    NAME: str = "AbstractRegistryStore"

    # Users

    @abstractmethod
    def get_user(self, user_id: int) -> User | None: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    def get_user_by_wallet(self, wallet_address: str) -> User | None: ...

    @abstractmethod
    def find_conflicting_user(
        self, email: str, username: str, wallet_address: str
    ) -> User | None:
        """Return any user already holding one of the unique identity fields."""

    @abstractmethod
    def add_user(self, user: User) -> User: ...

    @abstractmethod
    def update_user(self, user: User, changes: dict[str, Any]) -> User: ...

    @abstractmethod
    def list_users(
        self, filters: UserFilter, offset: int = 0, limit: int | None = None
    ) -> tuple[list[User], int]: ...

    @abstractmethod
    def count_users_by_role(self) -> list[RoleCount]: ...

    # Credits

    @abstractmethod
    def get_credit(self, credit_id: int) -> Credit | None: ...

    @abstractmethod
    def get_credit_by_tx_hash(self, tx_hash: str) -> Credit | None: ...

    @abstractmethod
    def add_credit(self, credit: Credit) -> Credit: ...

    @abstractmethod
    def save_credit(self, credit: Credit, expected_version: int) -> Credit:
        """Persist ``credit`` if the stored version equals ``expected_version``.

        Raises:
            ConcurrencyConflictError: If another writer updated the credit first.
        """

    @abstractmethod
    def list_credits(
        self, filters: CreditFilter, offset: int = 0, limit: int | None = None
    ) -> tuple[list[Credit], int]:
        """Return a page of credits, newest first, and the total match count."""

    @abstractmethod
    def aggregate_credits(
        self, group_by: str | None = None, filters: CreditFilter | None = None
    ) -> list[CreditAggregate]: ...

    # Ledger intents

    @abstractmethod
    def add_intent(self, intent: LedgerIntent) -> LedgerIntent: ...

    @abstractmethod
    def get_intent(self, intent_id: int) -> LedgerIntent | None: ...

    @abstractmethod
    def update_intent(
        self, intent: LedgerIntent, changes: dict[str, Any]
    ) -> LedgerIntent: ...

    @abstractmethod
    def list_intents(
        self, statuses: list[LedgerIntentStatus] | None = None
    ) -> list[LedgerIntent]: ...
