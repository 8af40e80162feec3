from hc_registry.audit.schemas import (
    AuditStatisticsResponse,
    CreditDetail,
    OwnershipHistoryResponse,
    SourceTypeStats,
    StatisticsOverview,
    StatusStats,
    VerificationRequest,
)
from hc_registry.core.database.abstract_store import AbstractRegistryStore, CreditFilter
from hc_registry.core.exceptions import ValidationError
from hc_registry.core.models.base import LedgerEventName, LedgerIntentStatus
from hc_registry.core.pagination import PageParams
from hc_registry.core.services import credit_locks
from hc_registry.credit import services as credit_services
from hc_registry.credit.models import Credit, LedgerIntent
from hc_registry.credit.validation import find_invariant_violations, replay_balance
from hc_registry.ledger.client import LedgerClient
from hc_registry.ledger.schemas import LedgerEvent
from hc_registry.logging_config import logger
from hc_registry.user.models import User
from hc_registry.user.schemas import UserPublic
from hc_registry.user.validation import RegistryAction, validate_user_permission
from hc_registry.utils import utc_datetime_now


def list_audit_credits(
    filters: CreditFilter, params: PageParams, store: AbstractRegistryStore
) -> tuple[list[Credit], int]:
    return store.list_credits(filters, offset=params.offset, limit=params.limit)


def get_audit_credit(credit_id: int, store: AbstractRegistryStore) -> CreditDetail:
    """Full credit record together with the public profiles of the users involved."""
    credit = credit_services.get_credit(credit_id, store)

    def public_profile(user_id: int) -> UserPublic | None:
        user = store.get_user(user_id)
        return UserPublic.model_validate(user) if user else None

    detail = CreditDetail.model_validate(credit)
    detail.producer = public_profile(credit.producer_id)
    detail.certifier = public_profile(credit.certifier_id)
    detail.current_owner = public_profile(credit.current_owner_id)
    return detail


def get_ownership_history(
    credit_id: int, store: AbstractRegistryStore
) -> OwnershipHistoryResponse:
    """Ownership history of a credit, checked against the stored balance."""
    credit = credit_services.get_credit(credit_id, store)
    violations = find_invariant_violations(credit)
    return OwnershipHistoryResponse(
        credit_id=credit.credit_id,
        ownership_history=credit.ownership_history,
        current_balance=credit.current_balance,
        replayed_balance=replay_balance(credit.ownership_history),
        is_consistent=not violations,
        violations=violations,
    )


def set_verification_status(
    credit_id: int,
    auditor: User,
    verification: VerificationRequest,
    store: AbstractRegistryStore,
) -> Credit:
    """Record an auditor's sign-off on a credit.

    Verification is independent of the credit lifecycle: balances, owner and
    status are left untouched. The write is guarded by the version check like
    every other credit update.
    """
    validate_user_permission(auditor, RegistryAction.VERIFY_CREDIT)

    with credit_locks.hold(credit_id):
        credit = credit_services.get_credit(credit_id, store)
        expected_version = credit.version

        credit.is_verified = verification.is_verified
        credit.verification_status = {
            "isVerified": verification.is_verified,
            "verifiedBy": auditor.id,
            "verificationDate": utc_datetime_now().isoformat(),
            "verificationNotes": verification.notes,
        }
        credit = store.save_credit(credit, expected_version)

    logger.info(
        f"Credit {credit_id} verification set to {verification.is_verified} by user {auditor.id}"
    )
    return credit


def get_audit_statistics(store: AbstractRegistryStore) -> AuditStatisticsResponse:
    totals = store.aggregate_credits()[0]
    by_source = store.aggregate_credits(group_by="renewable_source_type")
    by_status = store.aggregate_credits(group_by="status")

    return AuditStatisticsResponse(
        overview=StatisticsOverview(
            total_credits=totals.credit_count,
            total_hydrogen=totals.total_hydrogen,
            total_credit_amount=totals.total_credit_amount,
            active_credits=totals.active_credits,
            active_credit_amount=totals.active_balance,
            retired_credits=totals.retired_credits,
            retired_credit_amount=totals.retired_credit_amount,
            verified_credits=totals.verified_credits,
        ),
        source_type_stats=[
            SourceTypeStats(
                renewable_source_type=row.key,  # type: ignore
                count=row.credit_count,
                total_hydrogen=row.total_hydrogen,
                total_credit_amount=row.total_credit_amount,
            )
            for row in by_source
        ],
        status_stats=[
            StatusStats(status=row.key, count=row.credit_count)  # type: ignore
            for row in by_status
        ],
    )


def list_blockchain_events(
    event_name: LedgerEventName | None,
    from_block: int,
    to_block: int | None,
    ledger_client: LedgerClient,
) -> list[LedgerEvent]:
    if event_name is None:
        raise ValidationError("Event name is required")
    return ledger_client.query_events(event_name, from_block, to_block)


def list_ledger_intents(
    status: LedgerIntentStatus | None, store: AbstractRegistryStore
) -> list[LedgerIntent]:
    return store.list_intents([status] if status else None)
