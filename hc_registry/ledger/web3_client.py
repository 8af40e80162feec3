import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import requests
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract.contract import Contract, ContractFunction
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound
from web3.logs import DISCARD

from hc_registry.core.exceptions import (
    LedgerTimeoutError,
    LedgerUnavailableError,
    NotFoundError,
    ValidationError,
)
from hc_registry.core.models.base import LedgerEventName, UserRoles
from hc_registry.ledger.client import HolderType, LedgerClient, role_hash
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


def load_contract_abi(abi_path: str | Path) -> list[dict[str, Any]]:
    """Read a contract ABI, accepting either a bare ABI list or a Hardhat artifact."""
    with open(abi_path, "r") as file:
        data = json.load(file)
    if isinstance(data, dict):
        return data["abi"]
    return data


def _normalise(value: Any) -> Any:
    if isinstance(value, bytes):
        return Web3.to_hex(value)
    if isinstance(value, str) and Web3.is_address(value):
        return value.lower()
    return value


class Web3LedgerClient(LedgerClient):
    """Ledger client for the HydrogenCredit contract over JSON-RPC.

    Transactions are signed with the operator key when one is configured.
    Without a key they are sent ``from`` the caller's wallet, which only works
    against a development node holding unlocked accounts.
    """

    NAME = "Web3LedgerClient"

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        abi_path: str | Path,
        private_key: str | None = None,
        rpc_timeout: float = 10.0,
        confirmation_timeout: float = 60.0,
    ) -> None:
        super().__init__()
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.abi_path = abi_path
        self.rpc_timeout = rpc_timeout
        self.confirmation_timeout = confirmation_timeout
        self._private_key = private_key
        self._w3: Web3 | None = None
        self._contract: Contract | None = None
        self._account: LocalAccount | None = None

    def connect(self) -> None:
        w3 = Web3(
            Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout})
        )
        if not w3.is_connected():
            raise LedgerUnavailableError(f"Cannot reach ledger node at {self.rpc_url}")

        self._w3 = w3
        self._contract = w3.eth.contract(
            address=Web3.to_checksum_address(self.contract_address),
            abi=load_contract_abi(self.abi_path),
        )
        if self._private_key:
            self._account = w3.eth.account.from_key(self._private_key)
        self._connected = True
        logger.info(
            f"Connected to ledger at {self.rpc_url}, contract {self.contract_address}"
        )

    def close(self) -> None:
        self._w3 = None
        self._contract = None
        self._account = None
        self._connected = False

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            raise LedgerUnavailableError(f"{self.NAME} is not connected")
        return self._w3

    @property
    def contract(self) -> Contract:
        if self._contract is None:
            raise LedgerUnavailableError(f"{self.NAME} is not connected")
        return self._contract

    @contextmanager
    def _rpc_errors(self) -> Iterator[None]:
        try:
            yield
        except requests.exceptions.Timeout as e:
            logger.error(f"Ledger RPC timed out: {str(e)}")
            raise LedgerTimeoutError("Ledger node did not respond in time") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Ledger RPC failed: {str(e)}")
            raise LedgerUnavailableError(str(e)) from e

    # Writes

    def _send(self, function: ContractFunction, sender_address: str) -> bytes:
        if self._account is not None:
            transaction = function.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": self.w3.eth.get_transaction_count(self._account.address),
                    "chainId": self.w3.eth.chain_id,
                }
            )
            signed = self._account.sign_transaction(transaction)
            return self.w3.eth.send_raw_transaction(signed.raw_transaction)

        return function.transact({"from": Web3.to_checksum_address(sender_address)})

    def _submit(
        self, function: ContractFunction, sender_address: str
    ) -> LedgerWriteResult:
        with self._rpc_errors():
            try:
                tx_hash = self._send(function, sender_address)
            except ContractLogicError as e:
                logger.warning(f"Ledger rejected {function.fn_name}: {str(e)}")
                return LedgerRejected(reason=str(e))

        # Broadcast already; failures past this point must keep the hash
        tx_hash_hex = Web3.to_hex(tx_hash)
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.confirmation_timeout
            )
        except TimeExhausted:
            logger.warning(
                f"No receipt for {tx_hash_hex} after {self.confirmation_timeout}s"
            )
            return LedgerTimedOut(
                transaction_hash=tx_hash_hex,
                timeout_seconds=self.confirmation_timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Lost the ledger node while waiting for {tx_hash_hex}: {str(e)}")
            return LedgerTimedOut(
                transaction_hash=tx_hash_hex,
                timeout_seconds=self.confirmation_timeout,
            )

        ledger_receipt = self._to_receipt(receipt)
        if not ledger_receipt.succeeded:
            return LedgerRejected(
                reason="Transaction reverted", transaction_hash=tx_hash_hex
            )
        return LedgerConfirmed(receipt=ledger_receipt)

    def issue_credit(
        self,
        issuer_address: str,
        producer_address: str,
        renewable_source_type: str,
        hydrogen_amount: int,
        metadata_hash: str,
        credit_amount: int,
    ) -> LedgerWriteResult:
        function = self.contract.functions.issueCredit(
            Web3.to_checksum_address(producer_address),
            renewable_source_type,
            hydrogen_amount,
            metadata_hash,
            credit_amount,
        )
        return self._submit(function, issuer_address)

    def transfer_credit(
        self,
        sender_address: str,
        recipient_address: str,
        credit_id: int,
        amount: int,
    ) -> LedgerWriteResult:
        function = self.contract.functions.transferCredit(
            Web3.to_checksum_address(recipient_address), credit_id, amount
        )
        return self._submit(function, sender_address)

    def retire_credit(
        self, holder_address: str, credit_id: int, amount: int
    ) -> LedgerWriteResult:
        function = self.contract.functions.retireCredit(credit_id, amount)
        return self._submit(function, holder_address)

    # Reads

    def _to_event(self, log: Any) -> LedgerEvent:
        args = {key: _normalise(value) for key, value in dict(log["args"]).items()}
        return LedgerEvent(
            name=LedgerEventName(log["event"]),
            credit_id=args["creditId"],
            args=args,
            block_number=log["blockNumber"],
            transaction_hash=Web3.to_hex(log["transactionHash"]),
        )

    def _to_receipt(self, receipt: Any) -> LedgerReceipt:
        events: list[LedgerEvent] = []
        if receipt["status"] == 1:
            for event_name in LedgerEventName:
                event = getattr(self.contract.events, event_name.value)()
                events.extend(
                    self._to_event(log)
                    for log in event.process_receipt(receipt, errors=DISCARD)
                )

        issued = [e for e in events if e.name == LedgerEventName.CREDIT_ISSUED]
        return LedgerReceipt(
            transaction_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            status="success" if receipt["status"] == 1 else "failed",
            credit_id=issued[0].credit_id if issued else (
                events[0].credit_id if events else None
            ),
            events=events,
        )

    def get_receipt(self, transaction_hash: str) -> LedgerReceipt | None:
        with self._rpc_errors():
            try:
                receipt = self.w3.eth.get_transaction_receipt(transaction_hash)
            except TransactionNotFound:
                return None
            return self._to_receipt(receipt)

    def get_credit_metadata(self, credit_id: int) -> LedgerCreditMetadata:
        with self._rpc_errors():
            try:
                metadata = self.contract.functions.getCreditMetadata(credit_id).call()
            except ContractLogicError as e:
                raise NotFoundError(f"Credit {credit_id} not found on the ledger") from e

        (
            metadata_credit_id,
            producer,
            renewable_source_type,
            production_date,
            hydrogen_amount,
            metadata_hash,
            is_retired,
            retirement_date,
            retired_by,
        ) = metadata
        return LedgerCreditMetadata(
            credit_id=metadata_credit_id,
            producer=producer.lower(),
            renewable_source_type=renewable_source_type,
            production_date=production_date,
            hydrogen_amount=hydrogen_amount,
            metadata_hash=metadata_hash,
            is_retired=is_retired,
            retirement_date=retirement_date,
            retired_by=retired_by.lower(),
        )

    def verify_credit(self, credit_id: int, metadata_hash: str) -> bool:
        with self._rpc_errors():
            try:
                return self.contract.functions.verifyCredit(
                    credit_id, metadata_hash
                ).call()
            except ContractLogicError:
                return False

    def get_balance(self, address: str, credit_id: int) -> int:
        with self._rpc_errors():
            return self.contract.functions.balanceOf(
                Web3.to_checksum_address(address), credit_id
            ).call()

    def get_total_issued(self) -> int:
        with self._rpc_errors():
            return self.contract.functions.getTotalCreditsIssued().call()

    def get_user_credits(self, address: str, holder_type: HolderType) -> list[int]:
        checksum_address = Web3.to_checksum_address(address)
        with self._rpc_errors():
            if holder_type == "producer":
                function = self.contract.functions.getProducerCredits(checksum_address)
            else:
                function = self.contract.functions.getConsumerCredits(checksum_address)
            return list(function.call())

    def has_role(self, address: str, role: UserRoles) -> bool:
        with self._rpc_errors():
            return self.contract.functions.hasRole(
                role_hash(role), Web3.to_checksum_address(address)
            ).call()

    def query_events(
        self,
        event_name: LedgerEventName,
        from_block: int = 0,
        to_block: int | None = None,
    ) -> list[LedgerEvent]:
        if from_block < 0 or (to_block is not None and to_block < from_block):
            raise ValidationError("Invalid block range")

        event = getattr(self.contract.events, event_name.value)()
        with self._rpc_errors():
            logs = event.get_logs(
                from_block=from_block,
                to_block=to_block if to_block is not None else "latest",
            )
        return [self._to_event(log) for log in logs]

    def get_network_info(self) -> LedgerNetworkInfo:
        with self._rpc_errors():
            return LedgerNetworkInfo(
                backend=self.NAME,
                chain_id=self.w3.eth.chain_id,
                block_number=self.w3.eth.block_number,
                gas_price=str(self.w3.eth.gas_price),
                contract_address=self.contract_address,
            )
