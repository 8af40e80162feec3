import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field

from hc_registry import utils
from hc_registry.core.models.base import UserRoles


class User(utils.ActiveRecord, table=True):
    # Postgres reserves the name "user" as a keyword, so we use "registry_user" instead
    __tablename__: str = "registry_user"  # type: ignore

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True, nullable=False)
    email: str = Field(
        unique=True,
        index=True,
        nullable=False,
        description="The email address of the User, used for authentication.",
    )
    hashed_password: str = Field(nullable=False)
    wallet_address: str = Field(
        unique=True,
        index=True,
        nullable=False,
        description="Lower-cased ledger address the User holds credits under.",
    )
    role: UserRoles = Field(
        description="""The role of the User within the registry. Producers generate hydrogen,
                       certifiers issue credits against it, consumers retire credits and
                       regulators audit the registry.""",
    )
    organization: str = Field(nullable=False)
    is_verified: bool = Field(default=False)
    is_active: bool = Field(default=True)
    profile: dict = Field(default_factory=dict, sa_column=Column(JSON))
    settings: dict = Field(default_factory=dict, sa_column=Column(JSON))
    last_login: datetime.datetime | None = Field(default=None)
