import copy
import itertools
import threading
from typing import Any, Callable, TypeVar

from sqlmodel import SQLModel

from hc_registry.core.database.abstract_store import (
    CREDIT_GROUP_COLUMNS,
    AbstractRegistryStore,
    CreditAggregate,
    CreditFilter,
    RoleCount,
    UserFilter,
)
from hc_registry.core.exceptions import ConcurrencyConflictError, PersistenceError
from hc_registry.core.models.base import LedgerIntentStatus, UserRoles
from hc_registry.credit.models import Credit, LedgerIntent
from hc_registry.user.models import User
from hc_registry.utils import utc_datetime_now

T = TypeVar("T", bound=SQLModel)


def _clone(entity: T) -> T:
    return entity.__class__.model_validate(copy.deepcopy(entity.model_dump()))


def _credit_matches(credit: Credit, filters: CreditFilter) -> bool:
    checks = {
        "owner_id": credit.current_owner_id,
        "producer_id": credit.producer_id,
        "certifier_id": credit.certifier_id,
        "status": credit.status,
        "renewable_source_type": credit.renewable_source_type,
        "is_retired": credit.is_retired,
    }
    for field, value in checks.items():
        expected = getattr(filters, field)
        if expected is not None and value != expected:
            return False
    return True


def _user_matches(user: User, filters: UserFilter) -> bool:
    for field in ("role", "is_verified", "is_active"):
        expected = getattr(filters, field)
        if expected is not None and getattr(user, field) != expected:
            return False
    return True


def _newest_first(records: list[T]) -> list[T]:
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)  # type: ignore


class InMemoryRegistryStore(AbstractRegistryStore):
    """Dictionary-backed store used by the test suite and local runs.

    Records are copied on the way in and out, so callers never share state
    with the store and the version check behaves as it does against a database.
    """

    NAME = "InMemoryRegistryStore"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[int, User] = {}
        self._credits: dict[int, Credit] = {}
        self._intents: dict[int, LedgerIntent] = {}
        self._ids = {
            User: itertools.count(1),
            Credit: itertools.count(1),
            LedgerIntent: itertools.count(1),
        }

    def _find_user(self, predicate: Callable[[User], bool]) -> User | None:
        with self._lock:
            for user in self._users.values():
                if predicate(user):
                    return _clone(user)
        return None

    def _find_credit(self, predicate: Callable[[Credit], bool]) -> Credit | None:
        with self._lock:
            for credit in self._credits.values():
                if predicate(credit):
                    return _clone(credit)
        return None

    # Users

    def get_user(self, user_id: int) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return _clone(user) if user else None

    def get_user_by_email(self, email: str) -> User | None:
        email = email.strip().lower()
        return self._find_user(lambda u: u.email == email)

    def get_user_by_wallet(self, wallet_address: str) -> User | None:
        wallet_address = wallet_address.strip().lower()
        return self._find_user(lambda u: u.wallet_address == wallet_address)

    def find_conflicting_user(
        self, email: str, username: str, wallet_address: str
    ) -> User | None:
        return self._find_user(
            lambda u: u.email == email
            or u.username == username
            or u.wallet_address == wallet_address
        )

    def add_user(self, user: User) -> User:
        with self._lock:
            if self.find_conflicting_user(
                user.email, user.username, user.wallet_address
            ):
                raise PersistenceError(f"Duplicate user identity for {user.email}")
            stored = _clone(user)
            stored.id = next(self._ids[User])
            self._users[stored.id] = stored
            return _clone(stored)

    def update_user(self, user: User, changes: dict[str, Any]) -> User:
        with self._lock:
            stored = self._users.get(user.id)  # type: ignore
            if stored is None:
                raise PersistenceError(f"User {user.id} does not exist")
            stored.sqlmodel_update(copy.deepcopy(changes))
            stored.touch()
            user.sqlmodel_update(copy.deepcopy(changes))
            user.updated_at = stored.updated_at
            return _clone(stored)

    def list_users(
        self, filters: UserFilter, offset: int = 0, limit: int | None = None
    ) -> tuple[list[User], int]:
        with self._lock:
            matches = _newest_first(
                [u for u in self._users.values() if _user_matches(u, filters)]
            )
        page = matches[offset : offset + limit] if limit else matches[offset:]
        return [_clone(u) for u in page], len(matches)

    def count_users_by_role(self) -> list[RoleCount]:
        counts: dict[UserRoles, RoleCount] = {}
        with self._lock:
            for user in self._users.values():
                role_count = counts.setdefault(user.role, RoleCount(role=user.role))
                role_count.count += 1
                if user.is_verified:
                    role_count.verified_count += 1
        return list(counts.values())

    # Credits

    def get_credit(self, credit_id: int) -> Credit | None:
        return self._find_credit(lambda c: c.credit_id == credit_id)

    def get_credit_by_tx_hash(self, tx_hash: str) -> Credit | None:
        return self._find_credit(lambda c: c.blockchain_tx_hash == tx_hash)

    def add_credit(self, credit: Credit) -> Credit:
        with self._lock:
            if any(
                c.credit_id == credit.credit_id
                or c.blockchain_tx_hash == credit.blockchain_tx_hash
                for c in self._credits.values()
            ):
                raise PersistenceError(
                    f"Credit {credit.credit_id} or transaction {credit.blockchain_tx_hash} already recorded"
                )
            stored = _clone(credit)
            stored.id = next(self._ids[Credit])
            self._credits[stored.id] = stored
            return _clone(stored)

    def save_credit(self, credit: Credit, expected_version: int) -> Credit:
        with self._lock:
            stored = self._credits.get(credit.id)  # type: ignore
            if stored is None:
                raise PersistenceError(f"Credit {credit.credit_id} does not exist")
            if stored.version != expected_version:
                raise ConcurrencyConflictError(details=[{"creditId": credit.credit_id}])

            updated = _clone(credit)
            updated.created_at = stored.created_at
            updated.version = expected_version + 1
            updated.updated_at = utc_datetime_now()
            self._credits[updated.id] = updated  # type: ignore
            return _clone(updated)

    def list_credits(
        self, filters: CreditFilter, offset: int = 0, limit: int | None = None
    ) -> tuple[list[Credit], int]:
        with self._lock:
            matches = _newest_first(
                [c for c in self._credits.values() if _credit_matches(c, filters)]
            )
        page = matches[offset : offset + limit] if limit else matches[offset:]
        return [_clone(c) for c in page], len(matches)

    def aggregate_credits(
        self, group_by: str | None = None, filters: CreditFilter | None = None
    ) -> list[CreditAggregate]:
        if group_by is not None and group_by not in CREDIT_GROUP_COLUMNS:
            raise ValueError(f"Cannot group credits by {group_by}")

        filters = filters or CreditFilter()
        groups: dict[str | None, CreditAggregate] = {}
        if group_by is None:
            groups[None] = CreditAggregate()

        with self._lock:
            for credit in self._credits.values():
                if not _credit_matches(credit, filters):
                    continue
                key = getattr(credit, group_by).value if group_by else None
                aggregate = groups.setdefault(key, CreditAggregate(key=key))
                aggregate.credit_count += 1
                aggregate.total_hydrogen += credit.hydrogen_amount
                aggregate.total_credit_amount += credit.credit_amount
                if not credit.is_retired and credit.current_balance > 0:
                    aggregate.active_credits += 1
                    aggregate.active_balance += credit.current_balance
                if credit.is_retired:
                    aggregate.retired_credits += 1
                    aggregate.retired_credit_amount += credit.credit_amount
                if credit.is_verified:
                    aggregate.verified_credits += 1

        return sorted(groups.values(), key=lambda a: a.credit_count, reverse=True)

    # Ledger intents

    def add_intent(self, intent: LedgerIntent) -> LedgerIntent:
        with self._lock:
            stored = _clone(intent)
            stored.id = next(self._ids[LedgerIntent])
            self._intents[stored.id] = stored
            intent.id = stored.id
            return intent

    def get_intent(self, intent_id: int) -> LedgerIntent | None:
        with self._lock:
            intent = self._intents.get(intent_id)
            return _clone(intent) if intent else None

    def update_intent(
        self, intent: LedgerIntent, changes: dict[str, Any]
    ) -> LedgerIntent:
        with self._lock:
            stored = self._intents.get(intent.id)  # type: ignore
            if stored is None:
                raise PersistenceError(f"Ledger intent {intent.id} does not exist")
            stored.sqlmodel_update(copy.deepcopy(changes))
            stored.touch()
            intent.sqlmodel_update(copy.deepcopy(changes))
            intent.updated_at = stored.updated_at
            return intent

    def list_intents(
        self, statuses: list[LedgerIntentStatus] | None = None
    ) -> list[LedgerIntent]:
        with self._lock:
            intents = [
                i for i in self._intents.values() if not statuses or i.status in statuses
            ]
        intents.sort(key=lambda i: (i.created_at, i.id))
        return [_clone(i) for i in intents]
