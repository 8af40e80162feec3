from enum import Enum
from typing import Any, TypeVar

from esdbclient import EventStoreDBClient
from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select
from sqlmodel.sql.expression import SelectOfScalar

from hc_registry.core.database.abstract_store import (
    CREDIT_GROUP_COLUMNS,
    AbstractRegistryStore,
    CreditAggregate,
    CreditFilter,
    RoleCount,
    UserFilter,
)
from hc_registry.core.database.events import create_event
from hc_registry.core.exceptions import ConcurrencyConflictError, PersistenceError
from hc_registry.core.models.base import EventTypes, LedgerIntentStatus
from hc_registry.credit.models import Credit, LedgerIntent
from hc_registry.logging_config import logger
from hc_registry.user.models import User
from hc_registry.utils import utc_datetime_now

T = TypeVar("T", bound=SQLModel)

# Never written to the event stream
REDACTED_ATTRIBUTES = {"hashed_password"}


def _event_attributes(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if k not in REDACTED_ATTRIBUTES}


def _apply_credit_filters(
    query: SelectOfScalar, filters: CreditFilter
) -> SelectOfScalar:
    if filters.owner_id is not None:
        query = query.where(Credit.current_owner_id == filters.owner_id)
    if filters.producer_id is not None:
        query = query.where(Credit.producer_id == filters.producer_id)
    if filters.certifier_id is not None:
        query = query.where(Credit.certifier_id == filters.certifier_id)
    if filters.status is not None:
        query = query.where(Credit.status == filters.status)
    if filters.renewable_source_type is not None:
        query = query.where(
            Credit.renewable_source_type == filters.renewable_source_type
        )
    if filters.is_retired is not None:
        query = query.where(Credit.is_retired == filters.is_retired)
    return query


def _apply_user_filters(query: SelectOfScalar, filters: UserFilter) -> SelectOfScalar:
    if filters.role is not None:
        query = query.where(User.role == filters.role)
    if filters.is_verified is not None:
        query = query.where(User.is_verified == filters.is_verified)
    if filters.is_active is not None:
        query = query.where(User.is_active == filters.is_active)
    return query


class SQLRegistryStore(AbstractRegistryStore):
    """Registry store backed by a SQLModel session.

    Credits are returned detached from the session so that services can
    mutate them freely; changes only reach the database through
    ``save_credit``.
    """

    NAME = "SQLRegistryStore"

    def __init__(
        self, session: Session, esdb_client: EventStoreDBClient | None = None
    ) -> None:
        self.session = session
        self.esdb_client = esdb_client

    def _create(self, entity: T) -> T:
        try:
            self.session.add(entity)
            self.session.flush()
            self.session.refresh(entity)

            create_event(
                entity_id=entity.id,  # type: ignore
                entity_name=entity.__class__.__name__,
                event_type=EventTypes.CREATE,
                esdb_client=self.esdb_client,
            )
            self.session.commit()
        except SQLAlchemyError as e:
            err_msg = f"Error writing {entity.__class__.__name__}: {str(e)}"
            logger.error(err_msg)
            self.session.rollback()
            raise PersistenceError(err_msg) from e

        self.session.refresh(entity)
        return entity

    def _update(self, entity: T, changes: dict[str, Any]) -> T:
        before_data = {attr: getattr(entity, attr) for attr in changes}
        try:
            entity.sqlmodel_update(changes)
            entity.touch()  # type: ignore
            self.session.add(entity)
            self.session.flush()

            create_event(
                entity_id=entity.id,  # type: ignore
                entity_name=entity.__class__.__name__,
                event_type=EventTypes.UPDATE,
                attributes_before=_event_attributes(before_data),
                attributes_after=_event_attributes(changes),
                esdb_client=self.esdb_client,
            )
            self.session.commit()
        except SQLAlchemyError as e:
            err_msg = f"Error updating {entity.__class__.__name__}: {str(e)}"
            logger.error(err_msg)
            self.session.rollback()
            raise PersistenceError(err_msg) from e

        self.session.refresh(entity)
        return entity

    def _detach(self, credit: Credit | None) -> Credit | None:
        if credit is not None:
            self.session.expunge(credit)
        return credit

    # Users

    def get_user(self, user_id: int) -> User | None:
        return self.session.get(User, user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return self.session.exec(
            select(User).where(User.email == email.strip().lower())
        ).first()

    def get_user_by_wallet(self, wallet_address: str) -> User | None:
        return self.session.exec(
            select(User).where(User.wallet_address == wallet_address.strip().lower())
        ).first()

    def find_conflicting_user(
        self, email: str, username: str, wallet_address: str
    ) -> User | None:
        return self.session.exec(
            select(User).where(
                or_(
                    User.email == email,
                    User.username == username,
                    User.wallet_address == wallet_address,
                )
            )
        ).first()

    def add_user(self, user: User) -> User:
        return self._create(user)

    def update_user(self, user: User, changes: dict[str, Any]) -> User:
        return self._update(user, changes)

    def list_users(
        self, filters: UserFilter, offset: int = 0, limit: int | None = None
    ) -> tuple[list[User], int]:
        query = _apply_user_filters(select(User), filters)
        total = self.session.exec(
            _apply_user_filters(select(func.count(User.id)), filters)
        ).one()

        query = query.order_by(User.created_at.desc(), User.id.desc()).offset(offset)  # type: ignore
        if limit:
            query = query.limit(limit)

        return list(self.session.exec(query).all()), total

    def count_users_by_role(self) -> list[RoleCount]:
        rows = self.session.exec(
            select(
                User.role,
                func.count(User.id),
                func.coalesce(func.sum(case((User.is_verified == True, 1), else_=0)), 0),  # noqa: E712
            ).group_by(User.role)
        ).all()
        return [
            RoleCount(role=role, count=count, verified_count=verified)
            for role, count, verified in rows
        ]

    # Credits

    def get_credit(self, credit_id: int) -> Credit | None:
        credit = self.session.exec(
            select(Credit).where(Credit.credit_id == credit_id)
        ).first()
        return self._detach(credit)

    def get_credit_by_tx_hash(self, tx_hash: str) -> Credit | None:
        credit = self.session.exec(
            select(Credit).where(Credit.blockchain_tx_hash == tx_hash)
        ).first()
        return self._detach(credit)

    def add_credit(self, credit: Credit) -> Credit:
        created = self._create(credit)
        return self._detach(created)  # type: ignore

    def save_credit(self, credit: Credit, expected_version: int) -> Credit:
        values = credit.model_dump(exclude={"id", "created_at", "version"})
        values["version"] = expected_version + 1
        values["updated_at"] = utc_datetime_now()

        statement = (
            update(Credit)
            .where(Credit.id == credit.id, Credit.version == expected_version)  # type: ignore
            .values(**values)
        )
        try:
            result = self.session.exec(statement)  # type: ignore
            if result.rowcount != 1:
                self.session.rollback()
                err_msg = (
                    f"Credit {credit.credit_id} changed since version {expected_version}"
                )
                logger.warning(err_msg)
                raise ConcurrencyConflictError(details=[{"creditId": credit.credit_id}])

            create_event(
                entity_id=credit.id,  # type: ignore
                entity_name=Credit.__name__,
                event_type=EventTypes.UPDATE,
                attributes_before={"version": expected_version},
                attributes_after=credit.snapshot(exclude={"detailed_metadata"}),
                esdb_client=self.esdb_client,
            )
            self.session.commit()
        except SQLAlchemyError as e:
            err_msg = f"Error saving credit {credit.credit_id}: {str(e)}"
            logger.error(err_msg)
            self.session.rollback()
            raise PersistenceError(err_msg) from e

        saved = self.session.get(Credit, credit.id, populate_existing=True)
        return self._detach(saved)  # type: ignore

    def list_credits(
        self, filters: CreditFilter, offset: int = 0, limit: int | None = None
    ) -> tuple[list[Credit], int]:
        query = _apply_credit_filters(select(Credit), filters)
        total = self.session.exec(
            _apply_credit_filters(select(func.count(Credit.id)), filters)
        ).one()

        query = query.order_by(Credit.created_at.desc(), Credit.id.desc()).offset(offset)  # type: ignore
        if limit:
            query = query.limit(limit)

        credits = list(self.session.exec(query).all())
        for credit in credits:
            self.session.expunge(credit)
        return credits, total

    def aggregate_credits(
        self, group_by: str | None = None, filters: CreditFilter | None = None
    ) -> list[CreditAggregate]:
        if group_by is not None and group_by not in CREDIT_GROUP_COLUMNS:
            raise ValueError(f"Cannot group credits by {group_by}")

        is_active = (Credit.is_retired == False) & (Credit.current_balance > 0)  # noqa: E712
        is_retired = Credit.is_retired == True  # noqa: E712
        is_verified = Credit.is_verified == True  # noqa: E712

        aggregates = [
            func.count(Credit.id),
            func.coalesce(func.sum(Credit.hydrogen_amount), 0),
            func.coalesce(func.sum(Credit.credit_amount), 0),
            func.coalesce(func.sum(case((is_active, 1), else_=0)), 0),
            func.coalesce(func.sum(case((is_active, Credit.current_balance), else_=0)), 0),
            func.coalesce(func.sum(case((is_retired, 1), else_=0)), 0),
            func.coalesce(func.sum(case((is_retired, Credit.credit_amount), else_=0)), 0),
            func.coalesce(func.sum(case((is_verified, 1), else_=0)), 0),
        ]

        if group_by is None:
            query = select(*aggregates)
        else:
            group_column = getattr(Credit, group_by)
            query = (
                select(group_column, *aggregates)
                .group_by(group_column)
                .order_by(func.count(Credit.id).desc())
            )
        if filters is not None:
            query = _apply_credit_filters(query, filters)  # type: ignore

        results = []
        for row in self.session.exec(query).all():  # type: ignore
            row = tuple(row)
            key = None
            if group_by is not None:
                key, row = row[0], row[1:]
                key = key.value if isinstance(key, Enum) else str(key)
            results.append(
                CreditAggregate(
                    key=key,
                    credit_count=row[0],
                    total_hydrogen=row[1],
                    total_credit_amount=row[2],
                    active_credits=row[3],
                    active_balance=row[4],
                    retired_credits=row[5],
                    retired_credit_amount=row[6],
                    verified_credits=row[7],
                )
            )
        return results

    # Ledger intents

    def add_intent(self, intent: LedgerIntent) -> LedgerIntent:
        return self._create(intent)

    def get_intent(self, intent_id: int) -> LedgerIntent | None:
        return self.session.get(LedgerIntent, intent_id)

    def update_intent(
        self, intent: LedgerIntent, changes: dict[str, Any]
    ) -> LedgerIntent:
        return self._update(intent, changes)

    def list_intents(
        self, statuses: list[LedgerIntentStatus] | None = None
    ) -> list[LedgerIntent]:
        query = select(LedgerIntent)
        if statuses:
            query = query.where(LedgerIntent.status.in_(statuses))  # type: ignore
        query = query.order_by(LedgerIntent.created_at, LedgerIntent.id)  # type: ignore
        return list(self.session.exec(query).all())
