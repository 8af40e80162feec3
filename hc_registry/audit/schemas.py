import datetime

from pydantic import Field

from hc_registry.core.models.base import (
    CamelModel,
    CreditStatus,
    LedgerIntentStatus,
    LedgerOperation,
    RenewableSourceType,
)
from hc_registry.credit.schemas import CreditRead, OwnershipEntry
from hc_registry.user.schemas import UserPublic


class CreditDetail(CreditRead):
    producer: UserPublic | None = None
    certifier: UserPublic | None = None
    current_owner: UserPublic | None = None


class CreditDetailResponse(CamelModel):
    credit: CreditDetail


class OwnershipHistoryResponse(CamelModel):
    credit_id: int
    ownership_history: list[OwnershipEntry]
    current_balance: int
    replayed_balance: int
    is_consistent: bool
    violations: list[str] = Field(default_factory=list)


class VerificationRequest(CamelModel):
    is_verified: bool
    notes: str | None = Field(default=None, max_length=1000)


class VerificationResponse(CamelModel):
    message: str
    credit: CreditRead


class StatisticsOverview(CamelModel):
    total_credits: int
    total_hydrogen: int
    total_credit_amount: int
    active_credits: int
    active_credit_amount: int
    retired_credits: int
    retired_credit_amount: int
    verified_credits: int


class SourceTypeStats(CamelModel):
    renewable_source_type: RenewableSourceType
    count: int
    total_hydrogen: int
    total_credit_amount: int


class StatusStats(CamelModel):
    status: CreditStatus
    count: int


class AuditStatisticsResponse(CamelModel):
    overview: StatisticsOverview
    source_type_stats: list[SourceTypeStats]
    status_stats: list[StatusStats]


class LedgerIntentRead(CamelModel):
    id: int
    operation: LedgerOperation
    status: LedgerIntentStatus
    credit_id: int | None = None
    requested_by_id: int
    payload: dict
    transaction_hash: str | None = None
    block_number: int | None = None
    error: str | None = None
    attempts: int
    created_at: datetime.datetime
    updated_at: datetime.datetime


class LedgerIntentListResponse(CamelModel):
    intents: list[LedgerIntentRead]
