from typing import Any, Callable

from hc_registry.core.database.abstract_store import AbstractRegistryStore, CreditFilter
from hc_registry.core.exceptions import (
    BusinessRuleViolation,
    ConcurrencyConflictError,
    LedgerError,
    LedgerRejectedError,
    LedgerTimeoutError,
    LedgerUnavailableError,
    NotFoundError,
    PersistenceError,
    RecipientNotFoundError,
)
from hc_registry.core.models.base import (
    CreditStatus,
    LedgerIntentStatus,
    LedgerOperation,
    OwnershipEventType,
    RenewableSourceType,
    UserRoles,
)
from hc_registry.core.pagination import PageParams
from hc_registry.core.services import create_metadata_hash, credit_locks
from hc_registry.credit.models import Credit, LedgerIntent
from hc_registry.credit.schemas import (
    CreditStatisticsResponse,
    IssueCreditRequest,
    RetireCreditRequest,
    TransferCreditRequest,
)
from hc_registry.credit.validation import validate_retirement, validate_transfer
from hc_registry.ledger.client import LedgerClient
from hc_registry.ledger.schemas import (
    LedgerConfirmed,
    LedgerReceipt,
    LedgerRejected,
    LedgerTimedOut,
    LedgerWriteResult,
)
from hc_registry.logging_config import logger
from hc_registry.user import services as user_services
from hc_registry.user.models import User
from hc_registry.user.validation import RegistryAction, validate_user_permission
from hc_registry.utils import utc_datetime_now

CreditOperationResult = tuple[Credit, LedgerReceipt]


# Ledger intents


def _start_intent(
    operation: LedgerOperation,
    requested_by: User,
    payload: dict[str, Any],
    store: AbstractRegistryStore,
    credit_id: int | None = None,
) -> LedgerIntent:
    intent = LedgerIntent(
        operation=operation,
        status=LedgerIntentStatus.PENDING,
        credit_id=credit_id,
        requested_by_id=requested_by.id,  # type: ignore
        payload=payload,
    )
    intent = store.add_intent(intent)
    logger.info(f"Ledger intent {intent.id} opened: {operation.value} by user {requested_by.id}")
    return intent


def _submit_to_ledger(
    intent: LedgerIntent,
    ledger_call: Callable[[], LedgerWriteResult],
    store: AbstractRegistryStore,
) -> LedgerReceipt:
    """Run a ledger write for ``intent`` and record its outcome on the intent.

    Returns the receipt of a confirmed transaction. Every other outcome is
    recorded on the intent before the matching ledger exception is raised.
    """
    attempts = intent.attempts + 1
    try:
        result = ledger_call()
    except LedgerUnavailableError as e:
        store.update_intent(
            intent,
            {"status": LedgerIntentStatus.FAILED, "error": e.message, "attempts": attempts},
        )
        logger.error(f"Ledger intent {intent.id} failed, ledger unavailable: {e.message}")
        raise
    except LedgerTimeoutError as e:
        store.update_intent(
            intent,
            {
                "status": LedgerIntentStatus.OUTCOME_UNKNOWN,
                "error": e.message,
                "attempts": attempts,
            },
        )
        logger.error(f"Ledger intent {intent.id} outcome unknown: {e.message}")
        raise

    if isinstance(result, LedgerConfirmed):
        receipt = result.receipt
        store.update_intent(
            intent,
            {
                "status": LedgerIntentStatus.LEDGER_CONFIRMED,
                "transaction_hash": receipt.transaction_hash,
                "block_number": receipt.block_number,
                "credit_id": intent.credit_id
                if intent.credit_id is not None
                else receipt.credit_id,
                "attempts": attempts,
            },
        )
        return receipt

    if isinstance(result, LedgerTimedOut):
        store.update_intent(
            intent,
            {
                "status": LedgerIntentStatus.OUTCOME_UNKNOWN,
                "transaction_hash": result.transaction_hash,
                "error": "Timed out waiting for ledger confirmation",
                "attempts": attempts,
            },
        )
        logger.error(
            f"Ledger intent {intent.id} timed out, transaction {result.transaction_hash} left for reconciliation"
        )
        raise LedgerTimeoutError(
            details=[
                {"intentId": intent.id, "transactionHash": result.transaction_hash}
            ]
        )

    if isinstance(result, LedgerRejected):
        store.update_intent(
            intent,
            {
                "status": LedgerIntentStatus.FAILED,
                "transaction_hash": result.transaction_hash,
                "error": result.reason,
                "attempts": attempts,
            },
        )
        logger.warning(f"Ledger intent {intent.id} rejected: {result.reason}")
        raise LedgerRejectedError(
            f"Ledger rejected the transaction: {result.reason}",
            details=[{"intentId": intent.id}],
        )

    raise LedgerError(f"Unexpected ledger result {type(result).__name__}")


def _complete_intent(
    intent: LedgerIntent, credit: Credit, store: AbstractRegistryStore
) -> None:
    store.update_intent(
        intent,
        {
            "status": LedgerIntentStatus.COMPLETED,
            "credit_id": credit.credit_id,
            "error": None,
        },
    )
    logger.info(f"Ledger intent {intent.id} completed for credit {credit.credit_id}")


# Record mutations, shared with reconciliation


def _history_entry(
    entry_type: OwnershipEventType,
    owner_id: int,
    amount: int,
    transaction_hash: str,
    from_owner_id: int | None = None,
) -> dict[str, Any]:
    return {
        "owner": owner_id,
        "fromOwner": from_owner_id,
        "amount": amount,
        "transactionHash": transaction_hash,
        "timestamp": utc_datetime_now().isoformat(),
        "type": entry_type.value,
    }


def is_applied(credit: Credit, transaction_hash: str) -> bool:
    """Whether the ledger transaction is already reflected in the credit record."""
    return any(
        entry.get("transactionHash") == transaction_hash
        for entry in credit.ownership_history or []
    )


def _save(credit: Credit, expected_version: int, store: AbstractRegistryStore) -> Credit:
    try:
        return store.save_credit(credit, expected_version)
    except (ConcurrencyConflictError, PersistenceError) as e:
        logger.error(
            f"Ledger confirmed but credit {credit.credit_id} was not updated: {e.message}"
        )
        raise


def apply_issue(
    intent: LedgerIntent, receipt: LedgerReceipt, store: AbstractRegistryStore
) -> Credit:
    """Create the credit record for a confirmed issue transaction.

    A credit already stored for the transaction hash is returned unchanged.
    """
    existing = store.get_credit_by_tx_hash(receipt.transaction_hash)
    if existing is not None:
        return existing

    if receipt.credit_id is None:
        raise LedgerError(
            f"Issue transaction {receipt.transaction_hash} carries no credit id"
        )

    payload = intent.payload
    credit_amount = payload["creditAmount"]
    producer_id = payload["producerId"]
    credit = Credit(
        credit_id=receipt.credit_id,
        blockchain_tx_hash=receipt.transaction_hash,
        producer_id=producer_id,
        certifier_id=payload["certifierId"],
        renewable_source_type=RenewableSourceType(payload["renewableSourceType"]),
        hydrogen_amount=payload["hydrogenAmount"],
        credit_amount=credit_amount,
        metadata_hash=payload["metadataHash"],
        detailed_metadata=payload["detailedMetadata"],
        status=CreditStatus.ISSUED,
        current_owner_id=producer_id,
        current_balance=credit_amount,
        holdings={str(producer_id): credit_amount},
        ownership_history=[
            _history_entry(
                OwnershipEventType.ISSUE,
                producer_id,
                credit_amount,
                receipt.transaction_hash,
            )
        ],
        tags=payload.get("tags", []),
        notes=payload.get("notes"),
    )
    try:
        return store.add_credit(credit)
    except PersistenceError as e:
        logger.error(
            f"Ledger issued credit {receipt.credit_id} but the record was not stored: {e.message}"
        )
        raise


def apply_transfer(
    credit: Credit,
    intent: LedgerIntent,
    receipt: LedgerReceipt,
    store: AbstractRegistryStore,
) -> Credit:
    if is_applied(credit, receipt.transaction_hash):
        return credit

    sender_id = intent.payload["senderId"]
    recipient_id = intent.payload["recipientId"]
    amount = intent.payload["amount"]
    expected_version = credit.version

    holdings = dict(credit.holdings or {})
    holdings[str(sender_id)] = holdings.get(str(sender_id), 0) - amount
    holdings[str(recipient_id)] = holdings.get(str(recipient_id), 0) + amount

    credit.holdings = holdings
    credit.current_owner_id = recipient_id
    credit.current_balance = holdings[str(recipient_id)]
    credit.status = CreditStatus.TRANSFERRED
    credit.ownership_history = [
        *credit.ownership_history,
        _history_entry(
            OwnershipEventType.TRANSFER,
            recipient_id,
            amount,
            receipt.transaction_hash,
            from_owner_id=sender_id,
        ),
    ]
    return _save(credit, expected_version, store)


def apply_retirement(
    credit: Credit,
    intent: LedgerIntent,
    receipt: LedgerReceipt,
    store: AbstractRegistryStore,
) -> Credit:
    if is_applied(credit, receipt.transaction_hash):
        return credit

    consumer_id = intent.payload["consumerId"]
    amount = intent.payload["amount"]
    expected_version = credit.version
    retired_at = utc_datetime_now().isoformat()

    holdings = dict(credit.holdings or {})
    holdings[str(consumer_id)] = holdings.get(str(consumer_id), 0) - amount

    credit.holdings = holdings
    credit.is_retired = True
    credit.status = CreditStatus.RETIRED
    credit.current_balance = 0
    credit.retirement_details = {
        "retiredBy": consumer_id,
        "retirementDate": retired_at,
        "retirementReason": intent.payload["reason"],
        "retirementTxHash": receipt.transaction_hash,
        "amount": amount,
    }
    credit.ownership_history = [
        *credit.ownership_history,
        _history_entry(
            OwnershipEventType.RETIRE,
            consumer_id,
            amount,
            receipt.transaction_hash,
            from_owner_id=consumer_id,
        ),
    ]
    return _save(credit, expected_version, store)


def apply_confirmed_intent(
    intent: LedgerIntent, receipt: LedgerReceipt, store: AbstractRegistryStore
) -> Credit:
    """Bring the credit record in line with a ledger-confirmed intent and complete it.

    Used by reconciliation; safe to call repeatedly for the same intent.

    Raises:
        BusinessRuleViolation: If the credit was retired by another transaction
            before this one could be applied.
    """
    if intent.operation == LedgerOperation.ISSUE:
        credit = apply_issue(intent, receipt, store)
    else:
        with credit_locks.hold(intent.credit_id):  # type: ignore
            credit = get_credit(intent.credit_id, store)  # type: ignore
            if not is_applied(credit, receipt.transaction_hash) and credit.is_retired:
                raise BusinessRuleViolation(
                    f"Credit {credit.credit_id} was retired before transaction "
                    f"{receipt.transaction_hash} could be applied"
                )
            if intent.operation == LedgerOperation.TRANSFER:
                credit = apply_transfer(credit, intent, receipt, store)
            else:
                credit = apply_retirement(credit, intent, receipt, store)

    _complete_intent(intent, credit, store)
    return credit


# Lifecycle operations


def issue_credit(
    certifier: User,
    request: IssueCreditRequest,
    store: AbstractRegistryStore,
    ledger_client: LedgerClient,
) -> CreditOperationResult:
    """Issue a new credit to a producer.

    The metadata is hashed and an intent is recorded before the ledger is
    called. The credit record is only created once the ledger confirms the
    transaction, owned by the producer with the full credit amount.

    Args:
        certifier (User): The certifier issuing the credit
        request (IssueCreditRequest): The issue parameters and detailed metadata
        store (AbstractRegistryStore): The registry store
        ledger_client (LedgerClient): The connected ledger client

    Returns:
        CreditOperationResult: The stored credit and the ledger receipt

    Raises:
        AuthorizationError: If the caller is not a certifier.
        NotFoundError: If no user holds the producer wallet address.
        BusinessRuleViolation: If the wallet belongs to a non-producer.
        LedgerError: If the ledger rejects, times out or is unreachable.
        PersistenceError: If the record cannot be stored after confirmation.
    """
    validate_user_permission(certifier, RegistryAction.ISSUE_CREDIT)

    producer = user_services.find_by_wallet(request.producer_address, store)
    if producer is None:
        raise NotFoundError("Producer not found")
    if producer.role != UserRoles.PRODUCER:
        raise BusinessRuleViolation(
            "Producer address must belong to a user with PRODUCER role"
        )

    detailed_metadata = request.metadata.to_document()
    metadata_hash = create_metadata_hash(detailed_metadata)

    intent = _start_intent(
        LedgerOperation.ISSUE,
        certifier,
        {
            "certifierId": certifier.id,
            "producerId": producer.id,
            "renewableSourceType": request.renewable_source_type.value,
            "hydrogenAmount": request.hydrogen_amount,
            "creditAmount": request.credit_amount,
            "metadataHash": metadata_hash,
            "detailedMetadata": detailed_metadata,
            "tags": request.tags,
            "notes": request.notes,
        },
        store,
    )
    receipt = _submit_to_ledger(
        intent,
        lambda: ledger_client.issue_credit(
            issuer_address=certifier.wallet_address,
            producer_address=producer.wallet_address,
            renewable_source_type=request.renewable_source_type.value,
            hydrogen_amount=request.hydrogen_amount,
            metadata_hash=metadata_hash,
            credit_amount=request.credit_amount,
        ),
        store,
    )

    credit = apply_issue(intent, receipt, store)
    _complete_intent(intent, credit, store)

    logger.info(
        f"Issued credit {credit.credit_id}: {credit.credit_amount} units to producer {producer.id}"
    )
    return credit, receipt


def transfer_credit(
    sender: User,
    request: TransferCreditRequest,
    store: AbstractRegistryStore,
    ledger_client: LedgerClient,
) -> CreditOperationResult:
    """Move part or all of the current owner's balance to another user.

    The recipient becomes the current owner and the record's balance becomes
    the recipient's holding. Any units the sender keeps remain in ``holdings``.
    """
    validate_user_permission(sender, RegistryAction.TRANSFER_CREDIT)

    recipient = user_services.find_by_wallet(request.recipient_address, store)
    if recipient is None or not recipient.is_active:
        raise RecipientNotFoundError()

    with credit_locks.hold(request.credit_id):
        credit = get_credit(request.credit_id, store)
        validate_transfer(credit, sender, recipient, request.amount)

        intent = _start_intent(
            LedgerOperation.TRANSFER,
            sender,
            {
                "senderId": sender.id,
                "recipientId": recipient.id,
                "amount": request.amount,
            },
            store,
            credit_id=credit.credit_id,
        )
        receipt = _submit_to_ledger(
            intent,
            lambda: ledger_client.transfer_credit(
                sender_address=sender.wallet_address,
                recipient_address=recipient.wallet_address,
                credit_id=credit.credit_id,
                amount=request.amount,
            ),
            store,
        )

        credit = apply_transfer(credit, intent, receipt, store)
        _complete_intent(intent, credit, store)

    logger.info(
        f"Transferred {request.amount} units of credit {credit.credit_id} from user {sender.id} to user {recipient.id}"
    )
    return credit, receipt


def retire_credit(
    consumer: User,
    request: RetireCreditRequest,
    store: AbstractRegistryStore,
    ledger_client: LedgerClient,
) -> CreditOperationResult:
    """Retire a consumer's credit. Retirement is terminal and zeroes the balance."""
    validate_user_permission(consumer, RegistryAction.RETIRE_CREDIT)

    with credit_locks.hold(request.credit_id):
        credit = get_credit(request.credit_id, store)
        validate_retirement(credit, consumer, request.amount)

        intent = _start_intent(
            LedgerOperation.RETIRE,
            consumer,
            {
                "consumerId": consumer.id,
                "amount": request.amount,
                "reason": request.reason,
            },
            store,
            credit_id=credit.credit_id,
        )
        receipt = _submit_to_ledger(
            intent,
            lambda: ledger_client.retire_credit(
                holder_address=consumer.wallet_address,
                credit_id=credit.credit_id,
                amount=request.amount,
            ),
            store,
        )

        credit = apply_retirement(credit, intent, receipt, store)
        _complete_intent(intent, credit, store)

    logger.info(
        f"Retired {request.amount} units of credit {credit.credit_id} by user {consumer.id}"
    )
    return credit, receipt


def verify_credit(
    credit_id: int, metadata_hash: str, ledger_client: LedgerClient
) -> bool:
    """Compare ``metadata_hash`` with the hash the ledger stored at issue."""
    return ledger_client.verify_credit(credit_id, metadata_hash)


# Queries


def get_credit(credit_id: int, store: AbstractRegistryStore) -> Credit:
    credit = store.get_credit(credit_id)
    if credit is None:
        raise NotFoundError("Credit not found")
    return credit


def list_owned_credits(
    user: User,
    params: PageParams,
    store: AbstractRegistryStore,
    status: CreditStatus | None = None,
) -> tuple[list[Credit], int]:
    filters = CreditFilter(owner_id=user.id, status=status)
    return store.list_credits(filters, offset=params.offset, limit=params.limit)


def list_produced_credits(
    producer: User, params: PageParams, store: AbstractRegistryStore
) -> tuple[list[Credit], int]:
    validate_user_permission(producer, RegistryAction.LIST_PRODUCED_CREDITS)
    filters = CreditFilter(producer_id=producer.id)
    return store.list_credits(filters, offset=params.offset, limit=params.limit)


def get_credit_statistics(store: AbstractRegistryStore) -> CreditStatisticsResponse:
    """Registry-wide credit amounts: issued, hydrogen, still held and retired."""
    totals = store.aggregate_credits()[0]
    return CreditStatisticsResponse(
        total_credits=totals.total_credit_amount,
        total_hydrogen=totals.total_hydrogen,
        active_credits=totals.active_balance,
        retired_credits=totals.retired_credit_amount,
    )
