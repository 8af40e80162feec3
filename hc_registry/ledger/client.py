"""Interface to the external settlement ledger.

The ledger is the system of record for issue, transfer and retire. Write
operations block until the transaction is confirmed or the configured timeout
elapses, and report the outcome as a typed result instead of raising:

* ``LedgerConfirmed``: mined successfully, carries the receipt.
* ``LedgerTimedOut``: submitted but not confirmed in time; the outcome is
  unknown and must be reconciled later from the transaction hash.
* ``LedgerRejected``: reverted or refused by the contract; nothing changed.

Read operations raise ``LedgerUnavailableError`` or ``LedgerTimeoutError``.
"""

import re
from abc import ABC, abstractmethod
from typing import Literal

from web3 import Web3

from hc_registry.core.models.base import LedgerEventName, UserRoles
from hc_registry.ledger.schemas import (
    LedgerCreditMetadata,
    LedgerEvent,
    LedgerNetworkInfo,
    LedgerReceipt,
    LedgerTransactionStatus,
    LedgerWriteResult,
)

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
ZERO_ADDRESS = "0x" + "0" * 40

HolderType = Literal["producer", "consumer"]


def is_valid_address(address: str) -> bool:
    return bool(ADDRESS_PATTERN.match(address))


def role_hash(role: UserRoles) -> str:
    return Web3.to_hex(Web3.keccak(text=role.ledger_role))


class LedgerClient(ABC):
    NAME: str = "LedgerClient"

    def __init__(self) -> None:
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    def connect(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    # Writes

    @abstractmethod
    def issue_credit(
        self,
        issuer_address: str,
        producer_address: str,
        renewable_source_type: str,
        hydrogen_amount: int,
        metadata_hash: str,
        credit_amount: int,
    ) -> LedgerWriteResult: ...

    @abstractmethod
    def transfer_credit(
        self,
        sender_address: str,
        recipient_address: str,
        credit_id: int,
        amount: int,
    ) -> LedgerWriteResult: ...

    @abstractmethod
    def retire_credit(
        self, holder_address: str, credit_id: int, amount: int
    ) -> LedgerWriteResult: ...

    # Reads

    @abstractmethod
    def get_receipt(self, transaction_hash: str) -> LedgerReceipt | None:
        """Return the receipt of a mined transaction, or None while it is pending."""

    @abstractmethod
    def get_credit_metadata(self, credit_id: int) -> LedgerCreditMetadata: ...

    @abstractmethod
    def verify_credit(self, credit_id: int, metadata_hash: str) -> bool: ...

    @abstractmethod
    def get_balance(self, address: str, credit_id: int) -> int: ...

    @abstractmethod
    def get_total_issued(self) -> int: ...

    @abstractmethod
    def get_user_credits(self, address: str, holder_type: HolderType) -> list[int]: ...

    @abstractmethod
    def has_role(self, address: str, role: UserRoles) -> bool: ...

    @abstractmethod
    def query_events(
        self,
        event_name: LedgerEventName,
        from_block: int = 0,
        to_block: int | None = None,
    ) -> list[LedgerEvent]: ...

    @abstractmethod
    def get_network_info(self) -> LedgerNetworkInfo: ...

    def get_transaction_status(self, transaction_hash: str) -> LedgerTransactionStatus:
        receipt = self.get_receipt(transaction_hash)
        if receipt is None:
            return LedgerTransactionStatus(
                transaction_hash=transaction_hash,
                status="pending",
                message="Transaction is pending",
            )
        if receipt.succeeded:
            return LedgerTransactionStatus(
                transaction_hash=transaction_hash,
                status="success",
                message="Transaction successful",
                receipt=receipt,
            )
        return LedgerTransactionStatus(
            transaction_hash=transaction_hash,
            status="failed",
            message="Transaction failed",
            receipt=receipt,
        )
