from fastapi import APIRouter, Depends, Query

from hc_registry.audit import services
from hc_registry.audit.schemas import (
    AuditStatisticsResponse,
    CreditDetailResponse,
    LedgerIntentListResponse,
    LedgerIntentRead,
    OwnershipHistoryResponse,
    VerificationRequest,
    VerificationResponse,
)
from hc_registry.authentication.services import require_permission
from hc_registry.core.database.abstract_store import (
    AbstractRegistryStore,
    CreditFilter,
    UserFilter,
)
from hc_registry.core.database.db import get_store
from hc_registry.core.models.base import (
    CreditStatus,
    LedgerEventName,
    LedgerIntentStatus,
    RenewableSourceType,
    UserRoles,
)
from hc_registry.core.pagination import (
    CreditPagination,
    PageParams,
    UserPagination,
    page_params,
    pagination_fields,
)
from hc_registry.credit.reconciliation import (
    ReconciliationReport,
    reconcile_ledger_intents,
)
from hc_registry.credit.schemas import CreditPageResponse, CreditRead
from hc_registry.ledger.client import LedgerClient
from hc_registry.ledger.schemas import LedgerEventsResponse
from hc_registry.ledger.services import get_ledger_client
from hc_registry.settings import settings
from hc_registry.user import services as user_services
from hc_registry.user.models import User
from hc_registry.user.schemas import (
    UserPageResponse,
    UserRead,
    UserStatusResponse,
    UserStatusUpdate,
)
from hc_registry.user.validation import RegistryAction

router = APIRouter(tags=["Audit"])

auditor = require_permission(RegistryAction.AUDIT_CREDITS)
user_manager = require_permission(RegistryAction.MANAGE_USERS)
reconciler = require_permission(RegistryAction.RECONCILE_LEDGER)


@router.get("/credits", response_model=CreditPageResponse)
def read_audit_credits(
    credit_status: CreditStatus | None = Query(None, alias="status"),
    renewable_source_type: RenewableSourceType | None = Query(
        None, alias="renewableSourceType"
    ),
    producer_id: int | None = Query(None, alias="producer"),
    certifier_id: int | None = Query(None, alias="certifier"),
    params: PageParams = Depends(page_params(settings.AUDIT_PAGE_LIMIT)),
    current_user: User = Depends(auditor),
    store: AbstractRegistryStore = Depends(get_store),
):
    """List every credit in the registry, newest first, with optional filters."""
    filters = CreditFilter(
        status=credit_status,
        renewable_source_type=renewable_source_type,
        producer_id=producer_id,
        certifier_id=certifier_id,
    )
    credits, total = services.list_audit_credits(filters, params, store)
    return CreditPageResponse(
        credits=[CreditRead.model_validate(c) for c in credits],
        pagination=CreditPagination(
            **pagination_fields(params, total), total_credits=total
        ),
    )


@router.get("/credits/{credit_id}", response_model=CreditDetailResponse)
def read_audit_credit(
    credit_id: int,
    current_user: User = Depends(auditor),
    store: AbstractRegistryStore = Depends(get_store),
):
    return CreditDetailResponse(credit=services.get_audit_credit(credit_id, store))


@router.get("/credits/{credit_id}/history", response_model=OwnershipHistoryResponse)
def read_ownership_history(
    credit_id: int,
    current_user: User = Depends(auditor),
    store: AbstractRegistryStore = Depends(get_store),
):
    return services.get_ownership_history(credit_id, store)


@router.post("/verify/{credit_id}", response_model=VerificationResponse)
def verify_credit(
    credit_id: int,
    verification: VerificationRequest,
    current_user: User = Depends(auditor),
    store: AbstractRegistryStore = Depends(get_store),
):
    """Set the auditor verification status of a credit.

    Does not change the credit's balance or lifecycle status.
    """
    credit = services.set_verification_status(
        credit_id, current_user, verification, store
    )
    return VerificationResponse(
        message="Credit verification status updated",
        credit=CreditRead.model_validate(credit),
    )


@router.get("/statistics", response_model=AuditStatisticsResponse)
def read_audit_statistics(
    current_user: User = Depends(auditor),
    store: AbstractRegistryStore = Depends(get_store),
):
    return services.get_audit_statistics(store)


@router.get("/blockchain-events", response_model=LedgerEventsResponse)
def read_blockchain_events(
    event_name: LedgerEventName | None = Query(None, alias="eventName"),
    from_block: int = Query(0, ge=0, alias="fromBlock"),
    to_block: int | None = Query(None, ge=0, alias="toBlock"),
    current_user: User = Depends(auditor),
    ledger_client: LedgerClient = Depends(get_ledger_client),
):
    events = services.list_blockchain_events(
        event_name, from_block, to_block, ledger_client
    )
    return LedgerEventsResponse(
        event_name=event_name,  # type: ignore
        from_block=from_block,
        to_block=to_block,
        events=events,
    )


@router.get("/users", response_model=UserPageResponse)
def read_users(
    role: UserRoles | None = Query(None),
    is_verified: bool | None = Query(None, alias="isVerified"),
    params: PageParams = Depends(page_params(settings.AUDIT_PAGE_LIMIT)),
    current_user: User = Depends(user_manager),
    store: AbstractRegistryStore = Depends(get_store),
):
    """List registry users with per-role counts. Regulators only."""
    users, total = user_services.list_users(
        UserFilter(role=role, is_verified=is_verified), params, store
    )
    return UserPageResponse(
        users=[UserRead.model_validate(u) for u in users],
        pagination=UserPagination(**pagination_fields(params, total), total_users=total),
        role_stats=user_services.get_role_stats(store),
    )


@router.patch("/users/{user_id}", response_model=UserStatusResponse)
def update_user_status(
    user_id: int,
    status_update: UserStatusUpdate,
    current_user: User = Depends(user_manager),
    store: AbstractRegistryStore = Depends(get_store),
):
    """Verify, deactivate or reactivate a user. Users are never deleted."""
    user = user_services.update_user_status(user_id, status_update, store)
    return UserStatusResponse(
        message="User status updated", user=UserRead.model_validate(user)
    )


@router.get("/intents", response_model=LedgerIntentListResponse)
def read_ledger_intents(
    intent_status: LedgerIntentStatus | None = Query(None, alias="status"),
    current_user: User = Depends(reconciler),
    store: AbstractRegistryStore = Depends(get_store),
):
    intents = services.list_ledger_intents(intent_status, store)
    return LedgerIntentListResponse(
        intents=[LedgerIntentRead.model_validate(i) for i in intents]
    )


@router.post("/reconcile", response_model=ReconciliationReport)
def reconcile(
    current_user: User = Depends(reconciler),
    store: AbstractRegistryStore = Depends(get_store),
    ledger_client: LedgerClient = Depends(get_ledger_client),
):
    """Settle ledger intents left unconfirmed or unapplied by earlier requests."""
    return reconcile_ledger_intents(store, ledger_client)
