from typing import Any, Generator

from esdbclient import EventStoreDBClient
from fastapi import Depends
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from hc_registry.core.database import events
from hc_registry.core.database.abstract_store import AbstractRegistryStore
from hc_registry.core.database.sql_store import SQLRegistryStore
from hc_registry.credit import models as credit_models
from hc_registry.logging_config import logger
from hc_registry.settings import settings
from hc_registry.user import models as user_models

"""
This section is used by Alembic to load the all the database related models
"""

__all__ = [
    "SQLModel",
    "user_models",
    "credit_models",
]


def _redact(connection_str: str) -> str:
    if "@" not in connection_str or "://" not in connection_str:
        return connection_str
    scheme, rest = connection_str.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    username = credentials.split(":", 1)[0]
    return f"{scheme}://{username}:********@{host}"


class DButils:
    def __init__(
        self,
        connection_str: str | None = None,
        echo: bool = False,
    ):
        self.connection_str = connection_str or settings.DATABASE_URL

        logger.info(f"Database connection initialised: {_redact(self.connection_str)}")

        if self.connection_str.startswith("sqlite"):
            self.engine = create_engine(
                self.connection_str,
                connect_args={"check_same_thread": False},
                echo=echo,
            )
        else:
            self.engine = create_engine(
                self.connection_str,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_recycle=1800,
                echo=echo,
            )

    def create_tables(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def yield_session(self) -> Generator[Session, None, None]:
        with Session(self.engine) as session:
            yield session

    def get_session(self) -> Session:
        return Session(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


# Initialising the DButils client
db_name_to_client: dict[str, Any] = {}


def get_db_name_to_client() -> dict[str, Any]:
    global db_name_to_client

    if db_name_to_client == {}:
        db_name_to_client["db"] = DButils(
            connection_str=settings.DATABASE_URL, echo=settings.DATABASE_ECHO
        )

    return db_name_to_client


def get_engine() -> Engine:
    return get_db_name_to_client()["db"].engine


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency for a database session."""
    clients = get_db_name_to_client()

    if "db" not in clients:
        raise KeyError(
            f"Database client 'db' not found. Initialised clients: {list(clients.keys())}"
        )

    with Session(clients["db"].engine) as session:
        try:
            yield session
        finally:
            session.close()


def get_store(
    session: Session = Depends(get_session),
    esdb_client: EventStoreDBClient | None = Depends(events.get_esdb_client),
) -> AbstractRegistryStore:
    """FastAPI dependency returning the registry store for the current request."""
    return SQLRegistryStore(session, esdb_client)
