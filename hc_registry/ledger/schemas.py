from typing import Any, Literal, Union

from pydantic import Field

from hc_registry.core.models.base import CamelModel, LedgerEventName, UserRoles


class LedgerEvent(CamelModel):
    name: LedgerEventName
    credit_id: int
    args: dict[str, Any] = Field(default_factory=dict)
    block_number: int | None = None
    transaction_hash: str | None = None


class LedgerReceipt(CamelModel):
    transaction_hash: str
    block_number: int
    status: Literal["success", "failed"] = "success"
    credit_id: int | None = None
    events: list[LedgerEvent] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class LedgerConfirmed(CamelModel):
    outcome: Literal["confirmed"] = "confirmed"
    receipt: LedgerReceipt


class LedgerTimedOut(CamelModel):
    outcome: Literal["timeout"] = "timeout"
    transaction_hash: str | None = None
    timeout_seconds: float | None = None


class LedgerRejected(CamelModel):
    outcome: Literal["rejected"] = "rejected"
    reason: str
    transaction_hash: str | None = None


LedgerWriteResult = Union[LedgerConfirmed, LedgerTimedOut, LedgerRejected]


class LedgerCreditMetadata(CamelModel):
    credit_id: int
    producer: str
    renewable_source_type: str
    production_date: int
    hydrogen_amount: int
    metadata_hash: str
    is_retired: bool
    retirement_date: int
    retired_by: str


class LedgerNetworkInfo(CamelModel):
    backend: str
    chain_id: int
    block_number: int
    gas_price: str | None = None
    contract_address: str | None = None


class LedgerTransactionStatus(CamelModel):
    transaction_hash: str
    status: Literal["pending", "success", "failed"]
    message: str
    receipt: LedgerReceipt | None = None


# Route payloads


class LedgerVerifyRequest(CamelModel):
    credit_id: int = Field(ge=0)
    metadata_hash: str = Field(min_length=1)


class LedgerVerifyResponse(CamelModel):
    verified: bool
    credit_id: int
    metadata_hash: str


class LedgerBalanceResponse(CamelModel):
    user_address: str
    credit_id: int
    balance: int


class LedgerTotalCreditsResponse(CamelModel):
    total_credits: int


class LedgerUserCreditsResponse(CamelModel):
    user_address: str
    type: Literal["producer", "consumer"]
    credit_ids: list[int]


class LedgerRoleResponse(CamelModel):
    user_address: str
    role: UserRoles
    has_role: bool


class LedgerEventsResponse(CamelModel):
    event_name: LedgerEventName
    from_block: int
    to_block: int | None
    events: list[LedgerEvent]
