from sqlalchemy import JSON, Column
from sqlmodel import Field

from hc_registry import utils
from hc_registry.core.models.base import (
    CreditStatus,
    LedgerIntentStatus,
    LedgerOperation,
    RenewableSourceType,
)


class Credit(utils.ActiveRecord, table=True):
    """Off-ledger record of a hydrogen credit.

    ``current_owner_id``/``current_balance`` describe the holder the credit was
    last moved to. ``holdings`` mirrors the per-address balances kept by the
    ledger, keyed by user id as a string, so partial transfers stay visible.
    """

    id: int | None = Field(default=None, primary_key=True)
    credit_id: int = Field(unique=True, index=True, nullable=False)
    blockchain_tx_hash: str = Field(unique=True, index=True, nullable=False)
    producer_id: int = Field(foreign_key="registry_user.id", index=True)
    certifier_id: int = Field(foreign_key="registry_user.id", index=True)
    renewable_source_type: RenewableSourceType
    hydrogen_amount: int = Field(ge=0)
    credit_amount: int = Field(ge=0)
    metadata_hash: str = Field(nullable=False)
    detailed_metadata: dict = Field(default_factory=dict, sa_column=Column(JSON))
    status: CreditStatus = Field(default=CreditStatus.ISSUED, index=True)
    current_owner_id: int = Field(foreign_key="registry_user.id", index=True)
    current_balance: int = Field(ge=0)
    is_retired: bool = Field(default=False, index=True)
    holdings: dict = Field(default_factory=dict, sa_column=Column(JSON))
    ownership_history: list = Field(default_factory=list, sa_column=Column(JSON))
    retirement_details: dict | None = Field(default=None, sa_column=Column(JSON))
    is_verified: bool = Field(default=False, index=True)
    verification_status: dict = Field(
        default_factory=lambda: {"isVerified": False},
        sa_column=Column(JSON),
    )
    tags: list = Field(default_factory=list, sa_column=Column(JSON))
    notes: str | None = Field(default=None)
    version: int = Field(default=1, nullable=False)


class LedgerIntent(utils.ActiveRecord, table=True):
    """Outbox row written before a ledger call and completed after the record write."""

    __tablename__: str = "ledger_intent"  # type: ignore

    id: int | None = Field(default=None, primary_key=True)
    operation: LedgerOperation
    status: LedgerIntentStatus = Field(default=LedgerIntentStatus.PENDING, index=True)
    credit_id: int | None = Field(default=None, index=True)
    requested_by_id: int = Field(foreign_key="registry_user.id")
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
    transaction_hash: str | None = Field(default=None, index=True)
    block_number: int | None = Field(default=None)
    error: str | None = Field(default=None)
    attempts: int = Field(default=0)
