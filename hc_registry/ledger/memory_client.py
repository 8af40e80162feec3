import secrets
import threading
import time
from collections import deque
from typing import Callable, Literal

from hc_registry.core.exceptions import (
    LedgerUnavailableError,
    NotFoundError,
    ValidationError,
)
from hc_registry.core.models.base import LedgerEventName, UserRoles
from hc_registry.ledger.client import (
    ZERO_ADDRESS,
    HolderType,
    LedgerClient,
    is_valid_address,
)
from hc_registry.ledger.schemas import (
    LedgerConfirmed,
    LedgerCreditMetadata,
    LedgerEvent,
    LedgerNetworkInfo,
    LedgerReceipt,
    LedgerRejected,
    LedgerTimedOut,
    LedgerWriteResult,
)
from hc_registry.logging_config import logger

FailureMode = Literal["timeout", "rejected", "unavailable"]


class LedgerRevert(Exception):
    """Raised inside a simulated transaction to revert it."""


Transaction = Callable[[int, str], tuple[int, list[LedgerEvent]]]


class InMemoryLedgerClient(LedgerClient):
    """Process-local ledger reproducing the HydrogenCredit contract rules.

    Credit ids start at 0, balances are tracked per address and retiring
    burns the holder's balance. Failures can be queued with
    ``fail_next_write``; a queued timeout leaves the transaction pending
    until ``mine_pending`` or ``drop_pending`` is called.
    """

    NAME = "InMemoryLedgerClient"

    def __init__(self, chain_id: int = 31337, enforce_roles: bool = False) -> None:
        super().__init__()
        self.chain_id = chain_id
        self.enforce_roles = enforce_roles
        self._lock = threading.RLock()
        self._block_number = 0
        self._next_credit_id = 0
        self._metadata: dict[int, LedgerCreditMetadata] = {}
        self._balances: dict[tuple[str, int], int] = {}
        self._producer_credits: dict[str, list[int]] = {}
        self._consumer_credits: dict[str, list[int]] = {}
        self._roles: set[tuple[str, UserRoles]] = set()
        self._events: list[LedgerEvent] = []
        self._receipts: dict[str, LedgerReceipt] = {}
        self._pending: dict[str, Transaction] = {}
        self._failures: deque[tuple[FailureMode, str]] = deque()

    def connect(self) -> None:
        self._connected = True
        logger.info(f"{self.NAME} ready on chain {self.chain_id}")

    def close(self) -> None:
        self._connected = False

    def _require_connection(self) -> None:
        if not self._connected:
            raise LedgerUnavailableError(f"{self.NAME} is not connected")

    # Test hooks

    def fail_next_write(self, mode: FailureMode, reason: str = "Simulated failure") -> None:
        self._failures.append((mode, reason))

    def grant_role(self, address: str, role: UserRoles) -> None:
        with self._lock:
            self._roles.add((address.lower(), role))

    def mine_pending(self) -> list[LedgerReceipt]:
        """Mine every transaction left pending by a simulated timeout."""
        with self._lock:
            pending, self._pending = self._pending, {}
            return [self._mine(tx_hash, tx) for tx_hash, tx in pending.items()]

    def drop_pending(self) -> list[LedgerReceipt]:
        """Revert every pending transaction without applying it."""
        with self._lock:
            pending, self._pending = self._pending, {}
            receipts = []
            for tx_hash in pending:
                self._block_number += 1
                receipt = LedgerReceipt(
                    transaction_hash=tx_hash,
                    block_number=self._block_number,
                    status="failed",
                )
                self._receipts[tx_hash] = receipt
                receipts.append(receipt)
            return receipts

    # Transaction plumbing

    def _record(
        self, tx_hash: str, credit_id: int, events: list[LedgerEvent]
    ) -> LedgerReceipt:
        self._events.extend(events)
        receipt = LedgerReceipt(
            transaction_hash=tx_hash,
            block_number=self._block_number,
            credit_id=credit_id,
            events=events,
        )
        self._receipts[tx_hash] = receipt
        return receipt

    def _mine(self, tx_hash: str, tx: Transaction) -> LedgerReceipt:
        self._block_number += 1
        try:
            credit_id, events = tx(self._block_number, tx_hash)
        except LedgerRevert as e:
            logger.warning(f"{self.NAME} reverted pending transaction {tx_hash}: {e}")
            receipt = LedgerReceipt(
                transaction_hash=tx_hash,
                block_number=self._block_number,
                status="failed",
            )
            self._receipts[tx_hash] = receipt
            return receipt
        return self._record(tx_hash, credit_id, events)

    def _submit(self, tx: Transaction) -> LedgerWriteResult:
        self._require_connection()
        with self._lock:
            failure = self._failures.popleft() if self._failures else None
            if failure and failure[0] == "unavailable":
                raise LedgerUnavailableError(failure[1])
            if failure and failure[0] == "rejected":
                return LedgerRejected(reason=failure[1])

            tx_hash = "0x" + secrets.token_hex(32)
            if failure and failure[0] == "timeout":
                self._pending[tx_hash] = tx
                return LedgerTimedOut(transaction_hash=tx_hash)

            # Reverts surface before broadcast, as gas estimation would
            try:
                credit_id, events = tx(self._block_number + 1, tx_hash)
            except LedgerRevert as e:
                return LedgerRejected(reason=str(e))
            self._block_number += 1
            return LedgerConfirmed(receipt=self._record(tx_hash, credit_id, events))

    def _credit_event(
        self,
        name: LedgerEventName,
        credit_id: int,
        block_number: int,
        tx_hash: str,
        **args,
    ) -> LedgerEvent:
        return LedgerEvent(
            name=name,
            credit_id=credit_id,
            args={"creditId": credit_id, "timestamp": int(time.time()), **args},
            block_number=block_number,
            transaction_hash=tx_hash,
        )

    # Writes

    def issue_credit(
        self,
        issuer_address: str,
        producer_address: str,
        renewable_source_type: str,
        hydrogen_amount: int,
        metadata_hash: str,
        credit_amount: int,
    ) -> LedgerWriteResult:
        issuer = issuer_address.lower()
        producer = producer_address.lower()

        def tx(block_number: int, tx_hash: str) -> tuple[int, list[LedgerEvent]]:
            if self.enforce_roles and (issuer, UserRoles.CERTIFIER) not in self._roles:
                raise LedgerRevert("AccessControlUnauthorizedAccount")
            if not is_valid_address(producer) or producer == ZERO_ADDRESS:
                raise LedgerRevert("Invalid producer address")
            if hydrogen_amount <= 0:
                raise LedgerRevert("Hydrogen amount must be positive")
            if not metadata_hash:
                raise LedgerRevert("Metadata hash required")

            credit_id = self._next_credit_id
            self._next_credit_id += 1
            self._metadata[credit_id] = LedgerCreditMetadata(
                credit_id=credit_id,
                producer=producer,
                renewable_source_type=renewable_source_type,
                production_date=int(time.time()),
                hydrogen_amount=hydrogen_amount,
                metadata_hash=metadata_hash,
                is_retired=False,
                retirement_date=0,
                retired_by=ZERO_ADDRESS,
            )
            self._balances[(producer, credit_id)] = credit_amount
            self._producer_credits.setdefault(producer, []).append(credit_id)
            event = self._credit_event(
                LedgerEventName.CREDIT_ISSUED,
                credit_id,
                block_number,
                tx_hash,
                producer=producer,
                renewableSourceType=renewable_source_type,
                hydrogenAmount=hydrogen_amount,
                metadataHash=metadata_hash,
            )
            return credit_id, [event]

        return self._submit(tx)

    def transfer_credit(
        self,
        sender_address: str,
        recipient_address: str,
        credit_id: int,
        amount: int,
    ) -> LedgerWriteResult:
        sender = sender_address.lower()
        recipient = recipient_address.lower()

        def tx(block_number: int, tx_hash: str) -> tuple[int, list[LedgerEvent]]:
            if not is_valid_address(recipient) or recipient == ZERO_ADDRESS:
                raise LedgerRevert("Invalid recipient address")
            if self._balances.get((sender, credit_id), 0) < amount:
                raise LedgerRevert("Insufficient credits")

            self._balances[(sender, credit_id)] -= amount
            self._balances[(recipient, credit_id)] = (
                self._balances.get((recipient, credit_id), 0) + amount
            )
            held = self._consumer_credits.setdefault(recipient, [])
            if credit_id not in held:
                held.append(credit_id)
            event = self._credit_event(
                LedgerEventName.CREDIT_TRANSFERRED,
                credit_id,
                block_number,
                tx_hash,
                **{"from": sender, "to": recipient, "amount": amount},
            )
            return credit_id, [event]

        return self._submit(tx)

    def retire_credit(
        self, holder_address: str, credit_id: int, amount: int
    ) -> LedgerWriteResult:
        holder = holder_address.lower()

        def tx(block_number: int, tx_hash: str) -> tuple[int, list[LedgerEvent]]:
            if self._balances.get((holder, credit_id), 0) < amount:
                raise LedgerRevert("Insufficient credits")

            self._balances[(holder, credit_id)] -= amount
            metadata = self._metadata[credit_id]
            metadata.is_retired = True
            metadata.retirement_date = int(time.time())
            metadata.retired_by = holder
            event = self._credit_event(
                LedgerEventName.CREDIT_RETIRED,
                credit_id,
                block_number,
                tx_hash,
                retiredBy=holder,
                amount=amount,
            )
            return credit_id, [event]

        return self._submit(tx)

    # Reads

    def get_receipt(self, transaction_hash: str) -> LedgerReceipt | None:
        self._require_connection()
        with self._lock:
            return self._receipts.get(transaction_hash)

    def get_credit_metadata(self, credit_id: int) -> LedgerCreditMetadata:
        self._require_connection()
        with self._lock:
            if credit_id not in self._metadata:
                raise NotFoundError(f"Credit {credit_id} not found on the ledger")
            return self._metadata[credit_id].model_copy()

    def verify_credit(self, credit_id: int, metadata_hash: str) -> bool:
        self._require_connection()
        with self._lock:
            metadata = self._metadata.get(credit_id)
            return metadata is not None and metadata.metadata_hash == metadata_hash

    def get_balance(self, address: str, credit_id: int) -> int:
        self._require_connection()
        with self._lock:
            return self._balances.get((address.lower(), credit_id), 0)

    def get_total_issued(self) -> int:
        self._require_connection()
        return self._next_credit_id

    def get_user_credits(self, address: str, holder_type: HolderType) -> list[int]:
        self._require_connection()
        index = (
            self._producer_credits if holder_type == "producer" else self._consumer_credits
        )
        with self._lock:
            return list(index.get(address.lower(), []))

    def has_role(self, address: str, role: UserRoles) -> bool:
        self._require_connection()
        return (address.lower(), role) in self._roles

    def query_events(
        self,
        event_name: LedgerEventName,
        from_block: int = 0,
        to_block: int | None = None,
    ) -> list[LedgerEvent]:
        self._require_connection()
        if from_block < 0 or (to_block is not None and to_block < from_block):
            raise ValidationError("Invalid block range")
        with self._lock:
            return [
                e
                for e in self._events
                if e.name == event_name
                and (e.block_number or 0) >= from_block
                and (to_block is None or (e.block_number or 0) <= to_block)
            ]

    def get_network_info(self) -> LedgerNetworkInfo:
        self._require_connection()
        return LedgerNetworkInfo(
            backend=self.NAME,
            chain_id=self.chain_id,
            block_number=self._block_number,
            gas_price="0",
        )
