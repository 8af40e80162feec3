import itertools
from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from hc_registry.authentication.services import create_user_token, get_password_hash
from hc_registry.core.database import db, events
from hc_registry.core.database.abstract_store import AbstractRegistryStore
from hc_registry.core.database.memory_store import InMemoryRegistryStore
from hc_registry.core.database.sql_store import SQLRegistryStore
from hc_registry.core.models.base import RenewableSourceType, UserRoles
from hc_registry.credit import services as credit_services
from hc_registry.credit.models import Credit
from hc_registry.credit.schemas import IssueCreditRequest
from hc_registry.ledger.memory_client import InMemoryLedgerClient
from hc_registry.ledger.services import get_ledger_client
from hc_registry.main import app
from hc_registry.user.models import User

PASSWORD = "password"

# Hashed once, bcrypt is slow
PASSWORD_HASH = get_password_hash(PASSWORD)

SAMPLE_METADATA = {
    "productionFacility": {
        "name": "North Sea Electrolyser 1",
        "location": {"latitude": 53.55, "longitude": 8.58, "address": "Bremerhaven"},
        "capacity": 20,
        "efficiency": 68.5,
    },
    "productionDetails": {
        "startDate": "2026-09-01T00:00:00Z",
        "endDate": "2026-09-30T23:59:59Z",
        "totalEnergyConsumed": 1450.5,
        "renewableEnergyPercentage": 100,
        "carbonIntensity": 0.4,
        "certificationStandards": ["CertifHy", "ISO 14064"],
    },
    "qualityMetrics": {"purity": 99.97, "pressure": 30, "temperature": 25},
}


def wallet(n: int) -> str:
    return "0x" + f"{n:040x}"


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    """A fresh in-memory SQLite database per test, shared by every connection."""
    db_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(db_engine)

    yield db_engine
    db_engine.dispose()


@pytest.fixture()
def session(engine: Engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@pytest.fixture()
def store(session: Session) -> SQLRegistryStore:
    return SQLRegistryStore(session)


@pytest.fixture()
def memory_store() -> InMemoryRegistryStore:
    return InMemoryRegistryStore()


@pytest.fixture(params=["sql", "memory"])
def any_store(request, session: Session) -> AbstractRegistryStore:
    """Runs the test against both store backends."""
    if request.param == "sql":
        return SQLRegistryStore(session)
    return InMemoryRegistryStore()


@pytest.fixture()
def ledger_client() -> Generator[InMemoryLedgerClient, None, None]:
    client = InMemoryLedgerClient()
    client.connect()
    yield client
    client.close()


@pytest.fixture()
def api_client(
    session: Session, store: SQLRegistryStore, ledger_client: InMemoryLedgerClient
) -> Generator[TestClient, None, None]:
    """API client for testing routes.

    The lifespan is not entered, the store and ledger are injected instead.
    """

    def get_session_override():
        assert session.is_active
        return session

    app.dependency_overrides[db.get_db_name_to_client] = lambda: {}
    app.dependency_overrides[db.get_session] = get_session_override
    app.dependency_overrides[db.get_store] = lambda: store
    app.dependency_overrides[events.get_esdb_client] = lambda: None
    app.dependency_overrides[get_ledger_client] = lambda: ledger_client

    yield TestClient(app)

    app.dependency_overrides.clear()


def _user_factory(target_store: AbstractRegistryStore) -> Callable[..., User]:
    counter = itertools.count(1)

    def _create_user(
        role: UserRoles,
        name: str | None = None,
        is_active: bool = True,
        is_verified: bool = False,
        profile: dict | None = None,
    ) -> User:
        n = next(counter)
        username = name or f"{role.value.lower()}_{n}"
        user = User(
            username=username,
            email=f"{username}@fakecorp.com",
            hashed_password=PASSWORD_HASH,
            wallet_address=wallet(1000 + n),
            role=role,
            organization=f"Fake {role.value.title()} Corp",
            is_active=is_active,
            is_verified=is_verified,
            profile=profile or {},
        )
        return target_store.add_user(user)

    return _create_user


@pytest.fixture()
def user_factory(store: SQLRegistryStore) -> Callable[..., User]:
    """Factory function to create users with different roles."""
    return _user_factory(store)


@pytest.fixture()
def any_user_factory(any_store: AbstractRegistryStore) -> Callable[..., User]:
    return _user_factory(any_store)


@pytest.fixture()
def producer(user_factory) -> User:
    return user_factory(
        UserRoles.PRODUCER,
        "producer",
        profile={"firstName": "Pat", "phone": "+49 471 000000"},
    )


@pytest.fixture()
def certifier(user_factory) -> User:
    return user_factory(UserRoles.CERTIFIER, "certifier")


@pytest.fixture()
def consumer(user_factory) -> User:
    return user_factory(UserRoles.CONSUMER, "consumer")


@pytest.fixture()
def consumer_2(user_factory) -> User:
    return user_factory(UserRoles.CONSUMER, "consumer_2")


@pytest.fixture()
def regulator(user_factory) -> User:
    return user_factory(UserRoles.REGULATOR, "regulator")


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Factory function to create bearer headers for users."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_user_token(user)}"}

    return _headers


@pytest.fixture()
def issue_request_factory() -> Callable[..., IssueCreditRequest]:
    def _issue_request(
        producer: User,
        credit_amount: int = 100,
        hydrogen_amount: int = 1000,
        source: RenewableSourceType = RenewableSourceType.WIND,
        **overrides: Any,
    ) -> IssueCreditRequest:
        return IssueCreditRequest.model_validate(
            {
                "producerAddress": producer.wallet_address,
                "renewableSourceType": source.value,
                "hydrogenAmount": hydrogen_amount,
                "creditAmount": credit_amount,
                "metadata": SAMPLE_METADATA,
                "tags": ["offshore"],
                **overrides,
            }
        )

    return _issue_request


@pytest.fixture()
def issued_credit(
    certifier: User,
    producer: User,
    store: SQLRegistryStore,
    ledger_client: InMemoryLedgerClient,
    issue_request_factory,
) -> Credit:
    """A credit of 100 units issued to the producer."""
    credit, _ = credit_services.issue_credit(
        certifier, issue_request_factory(producer), store, ledger_client
    )
    return credit
