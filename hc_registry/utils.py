import datetime
from functools import partial
from typing import Any

from sqlmodel import Field, SQLModel

utc_datetime_now = partial(datetime.datetime.now, datetime.timezone.utc)


class ActiveRecord(SQLModel):
    created_at: datetime.datetime = Field(
        default_factory=utc_datetime_now, nullable=False
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_datetime_now, nullable=False
    )

    def touch(self) -> None:
        self.updated_at = utc_datetime_now()

    def snapshot(self, exclude: set[str] | None = None) -> dict[str, Any]:
        """JSON-safe copy of the record, used for events and detached copies."""
        return self.model_dump(mode="json", exclude=exclude)


def normalise_wallet_address(address: str) -> str:
    return address.strip().lower()
