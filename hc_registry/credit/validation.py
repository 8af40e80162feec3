from hc_registry.core.exceptions import (
    AlreadyRetiredError,
    CreditRetiredError,
    InsufficientBalanceError,
    NotOwnerError,
    ValidationError,
)
from hc_registry.core.models.base import CreditStatus, OwnershipEventType
from hc_registry.credit.models import Credit
from hc_registry.user.models import User


def _validate_amount(credit: Credit, amount: int) -> None:
    if amount <= 0:
        raise ValidationError(
            details=[{"field": "amount", "message": "Amount must be a positive integer"}]
        )
    if amount > credit.current_balance:
        raise InsufficientBalanceError(
            details=[{"available": credit.current_balance, "requested": amount}]
        )


def validate_transfer(credit: Credit, sender: User, recipient: User, amount: int):
    """
    Validate that the sender may move ``amount`` units of the credit to the recipient.

    Args:
        credit (Credit): The credit being transferred, as currently stored
        sender (User): The user requesting the transfer
        recipient (User): The user receiving the credit
        amount (int): The number of units to transfer

    Raises:
        CreditRetiredError: If the credit has been retired.
        NotOwnerError: If the sender is not the current owner.
        InsufficientBalanceError: If the amount exceeds the current balance.
        ValidationError: If the amount is not positive or the sender sends to themselves.
    """
    if credit.is_retired:
        raise CreditRetiredError()

    if credit.current_owner_id != sender.id:
        raise NotOwnerError()

    _validate_amount(credit, amount)

    if recipient.id == sender.id:
        raise ValidationError("Cannot transfer credits to yourself")


def validate_retirement(credit: Credit, consumer: User, amount: int):
    """
    Validate that the consumer may retire ``amount`` units of the credit.

    Raises:
        AlreadyRetiredError: If the credit has already been retired.
        NotOwnerError: If the consumer is not the current owner.
        InsufficientBalanceError: If the amount exceeds the current balance.
    """
    if credit.is_retired:
        raise AlreadyRetiredError()

    if credit.current_owner_id != consumer.id:
        raise NotOwnerError()

    _validate_amount(credit, amount)


def replay_holdings(ownership_history: list[dict]) -> dict[str, int]:
    """Rebuild the per-holder balances by replaying the ownership history."""
    holdings: dict[str, int] = {}
    for entry in ownership_history:
        owner = str(entry["owner"])
        amount = entry["amount"]
        if entry["type"] == OwnershipEventType.ISSUE:
            holdings[owner] = holdings.get(owner, 0) + amount
        elif entry["type"] == OwnershipEventType.TRANSFER:
            sender = str(entry["fromOwner"])
            holdings[sender] = holdings.get(sender, 0) - amount
            holdings[owner] = holdings.get(owner, 0) + amount
        elif entry["type"] == OwnershipEventType.RETIRE:
            holdings[owner] = holdings.get(owner, 0) - amount
    return holdings


def replay_balance(ownership_history: list[dict]) -> int:
    """Balance of the current owner implied by the ownership history."""
    if not ownership_history:
        return 0
    last_entry = ownership_history[-1]
    if last_entry["type"] == OwnershipEventType.RETIRE:
        return 0
    return replay_holdings(ownership_history).get(str(last_entry["owner"]), 0)


def find_invariant_violations(credit: Credit) -> list[str]:
    """
    Check a credit record against the lifecycle and balance invariants.

    Returns:
        list[str]: A description of every violated invariant, empty when the record is consistent.
    """
    violations = []
    history = credit.ownership_history or []

    if credit.current_balance < 0:
        violations.append("Current balance is negative")

    if credit.is_retired and credit.current_balance != 0:
        violations.append("Retired credit has a non-zero balance")

    if credit.is_retired != (credit.status == CreditStatus.RETIRED):
        violations.append("Retired flag does not match status")

    if not history:
        violations.append("Ownership history is empty")
        return violations

    if history[0]["type"] != OwnershipEventType.ISSUE:
        violations.append("First ownership entry is not an issue")

    retire_positions = [
        i for i, e in enumerate(history) if e["type"] == OwnershipEventType.RETIRE
    ]
    if retire_positions and retire_positions[0] != len(history) - 1:
        violations.append("Ownership entries follow a retirement")

    timestamps = [str(e["timestamp"]) for e in history]
    if timestamps != sorted(timestamps):
        violations.append("Ownership history is not time ordered")

    holdings = replay_holdings(history)
    if any(amount < 0 for amount in holdings.values()):
        violations.append("Replayed holdings go negative")

    stored_holdings = {k: v for k, v in (credit.holdings or {}).items() if v}
    if stored_holdings != {k: v for k, v in holdings.items() if v}:
        violations.append("Holdings do not match the ownership history")

    if replay_balance(history) != credit.current_balance:
        violations.append("Current balance does not match the ownership history")

    return violations
