import datetime
import enum
from enum import Enum
from functools import partial

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

utc_datetime_now = partial(datetime.datetime.now, datetime.timezone.utc)


class UserRoles(str, Enum):
    PRODUCER = "PRODUCER"
    CERTIFIER = "CERTIFIER"
    CONSUMER = "CONSUMER"
    REGULATOR = "REGULATOR"

    def __str__(self):
        return self.value

    @property
    def ledger_role(self) -> str:
        """Role name as registered on the ledger contract."""
        return f"{self.value}_ROLE"


class RenewableSourceType(str, enum.Enum):
    SOLAR = "Solar"
    WIND = "Wind"
    HYDRO = "Hydro"
    GEOTHERMAL = "Geothermal"
    BIOMASS = "Biomass"
    OTHER = "Other"

    @classmethod
    def values(cls):
        return [e.value for e in cls]


class CreditStatus(str, Enum):
    ISSUED = "ISSUED"
    TRANSFERRED = "TRANSFERRED"
    RETIRED = "RETIRED"
    EXPIRED = "EXPIRED"


class OwnershipEventType(str, Enum):
    ISSUE = "ISSUE"
    TRANSFER = "TRANSFER"
    RETIRE = "RETIRE"


class LedgerOperation(str, Enum):
    ISSUE = "ISSUE"
    TRANSFER = "TRANSFER"
    RETIRE = "RETIRE"


class LedgerIntentStatus(str, Enum):
    PENDING = "PENDING"
    LEDGER_CONFIRMED = "LEDGER_CONFIRMED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    OUTCOME_UNKNOWN = "OUTCOME_UNKNOWN"


class LedgerEventName(str, Enum):
    CREDIT_ISSUED = "CreditIssued"
    CREDIT_TRANSFERRED = "CreditTransferred"
    CREDIT_RETIRED = "CreditRetired"


class EventTypes(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Event(BaseModel):
    entity_id: int
    entity_name: str
    attributes_before: dict | None = None
    attributes_after: dict | None = None
    timestamp: datetime.datetime = Field(default_factory=utc_datetime_now)


class logging_levels(str, enum.Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingLevelRequest(BaseModel):
    level: logging_levels


class CamelModel(BaseModel):
    """Base for API schemas: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )
