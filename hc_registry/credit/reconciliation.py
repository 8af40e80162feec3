"""Repair the registry after ledger calls whose local follow-up did not finish.

Two kinds of ledger intent need attention:

* ``OUTCOME_UNKNOWN``: the transaction was submitted but no confirmation
  arrived in time. The receipt is re-read; a pending transaction is left
  alone, a reverted one fails the intent and a mined one moves it on to
  ``LEDGER_CONFIRMED``.
* ``LEDGER_CONFIRMED``: the ledger changed but the credit record did not.
  The mutation is re-applied; applying it twice has no further effect.
"""

from typing import Literal

from pydantic import Field

from hc_registry.core.database.abstract_store import AbstractRegistryStore
from hc_registry.core.exceptions import RegistryError
from hc_registry.core.models.base import CamelModel, LedgerIntentStatus
from hc_registry.credit.models import LedgerIntent
from hc_registry.credit.services import apply_confirmed_intent
from hc_registry.ledger.client import LedgerClient
from hc_registry.logging_config import logger

IntentOutcome = Literal["completed", "failed", "pending", "unresolvable"]

RECONCILABLE_STATUSES = [
    LedgerIntentStatus.OUTCOME_UNKNOWN,
    LedgerIntentStatus.LEDGER_CONFIRMED,
]


class ReconciliationError(CamelModel):
    intent_id: int
    message: str


class ReconciliationReport(CamelModel):
    examined: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    unresolvable: int = 0
    errors: list[ReconciliationError] = Field(default_factory=list)


def reconcile_intent(
    intent: LedgerIntent, store: AbstractRegistryStore, ledger_client: LedgerClient
) -> IntentOutcome:
    if not intent.transaction_hash:
        # Nothing to look up; needs an operator
        logger.warning(f"Ledger intent {intent.id} has no transaction hash to reconcile")
        return "unresolvable"

    receipt = ledger_client.get_receipt(intent.transaction_hash)
    if receipt is None:
        logger.info(f"Transaction {intent.transaction_hash} still pending")
        return "pending"

    if not receipt.succeeded:
        store.update_intent(
            intent,
            {
                "status": LedgerIntentStatus.FAILED,
                "block_number": receipt.block_number,
                "error": "Transaction reverted on the ledger",
            },
        )
        logger.info(f"Ledger intent {intent.id} failed: transaction reverted")
        return "failed"

    if intent.status == LedgerIntentStatus.OUTCOME_UNKNOWN:
        store.update_intent(
            intent,
            {
                "status": LedgerIntentStatus.LEDGER_CONFIRMED,
                "block_number": receipt.block_number,
                "credit_id": intent.credit_id
                if intent.credit_id is not None
                else receipt.credit_id,
                "error": None,
            },
        )

    apply_confirmed_intent(intent, receipt, store)
    return "completed"


def reconcile_ledger_intents(
    store: AbstractRegistryStore, ledger_client: LedgerClient
) -> ReconciliationReport:
    """Walk every unresolved ledger intent and settle what the ledger allows.

    Errors on one intent are recorded on it and reported; they do not stop
    the rest of the run.
    """
    report = ReconciliationReport()

    for intent in store.list_intents(RECONCILABLE_STATUSES):
        report.examined += 1
        try:
            outcome = reconcile_intent(intent, store, ledger_client)
        except RegistryError as e:
            logger.error(f"Could not reconcile ledger intent {intent.id}: {e.message}")
            store.update_intent(intent, {"error": e.message})
            report.errors.append(
                ReconciliationError(intent_id=intent.id, message=e.message)  # type: ignore
            )
            continue

        setattr(report, outcome, getattr(report, outcome) + 1)

    logger.info(
        f"Reconciliation examined {report.examined} intents: {report.completed} completed, "
        f"{report.failed} failed, {report.pending} pending, {len(report.errors)} errors"
    )
    return report
