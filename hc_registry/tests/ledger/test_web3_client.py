import json
from unittest.mock import MagicMock

import pytest
import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from hc_registry.core.exceptions import (
    LedgerTimeoutError,
    LedgerUnavailableError,
    NotFoundError,
    ValidationError,
)
from hc_registry.core.models.base import LedgerEventName
from hc_registry.ledger.schemas import LedgerConfirmed, LedgerRejected, LedgerTimedOut
from hc_registry.ledger.web3_client import Web3LedgerClient, load_contract_abi
from hc_registry.tests.conftest import wallet

TX_HASH = b"\x12" * 32
PRODUCER = "0x" + "ab" * 20
CERTIFIER = wallet(1)


@pytest.fixture()
def web3_client() -> Web3LedgerClient:
    """Client wired to mocked node and contract objects."""
    client = Web3LedgerClient(
        rpc_url="http://localhost:8545",
        contract_address="0x" + "1" * 40,
        abi_path="unused.json",
        confirmation_timeout=5,
    )
    client._w3 = MagicMock()
    client._contract = MagicMock()
    client._connected = True
    return client


def mined_receipt(status: int = 1) -> dict:
    return {"status": status, "transactionHash": TX_HASH, "blockNumber": 42}


def issued_log(credit_id: int = 7) -> dict:
    return {
        "event": "CreditIssued",
        "args": {
            "creditId": credit_id,
            "producer": PRODUCER,
            "hydrogenAmount": 1000,
            "metadataHash": "0xabc",
        },
        "blockNumber": 42,
        "transactionHash": TX_HASH,
    }


def issue(client: Web3LedgerClient):
    return client.issue_credit(CERTIFIER, PRODUCER, "Wind", 1000, "0xabc", 100)


class TestLoadContractAbi:
    def test_bare_abi(self, tmp_path):
        abi = [{"type": "function", "name": "getTotalCreditsIssued"}]
        abi_path = tmp_path / "HydrogenCredit.json"
        abi_path.write_text(json.dumps(abi))

        assert load_contract_abi(abi_path) == abi

    def test_hardhat_artifact(self, tmp_path):
        abi = [{"type": "event", "name": "CreditIssued"}]
        abi_path = tmp_path / "artifact.json"
        abi_path.write_text(json.dumps({"contractName": "HydrogenCredit", "abi": abi}))

        assert load_contract_abi(abi_path) == abi


class TestWeb3Writes:
    def test_confirmed_issue(self, web3_client):
        function = web3_client._contract.functions.issueCredit.return_value
        function.transact.return_value = TX_HASH
        web3_client._w3.eth.wait_for_transaction_receipt.return_value = mined_receipt()
        events = web3_client._contract.events
        events.CreditIssued.return_value.process_receipt.return_value = [issued_log()]

        result = issue(web3_client)

        assert isinstance(result, LedgerConfirmed)
        assert result.receipt.transaction_hash == Web3.to_hex(TX_HASH)
        assert result.receipt.block_number == 42
        assert result.receipt.credit_id == 7
        (event,) = result.receipt.events
        assert event.name == LedgerEventName.CREDIT_ISSUED
        assert event.args["producer"] == PRODUCER
        function.transact.assert_called_once_with(
            {"from": Web3.to_checksum_address(CERTIFIER)}
        )

    def test_confirmation_timeout(self, web3_client):
        function = web3_client._contract.functions.issueCredit.return_value
        function.transact.return_value = TX_HASH
        web3_client._w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted(
            "not mined"
        )

        result = issue(web3_client)

        assert isinstance(result, LedgerTimedOut)
        assert result.transaction_hash == Web3.to_hex(TX_HASH)
        assert result.timeout_seconds == 5

    def test_contract_rejection(self, web3_client):
        function = web3_client._contract.functions.transferCredit.return_value
        function.transact.side_effect = ContractLogicError(
            "execution reverted: Insufficient credits"
        )

        result = web3_client.transfer_credit(PRODUCER, wallet(2), 7, 10)

        assert isinstance(result, LedgerRejected)
        assert "Insufficient credits" in result.reason
        assert result.transaction_hash is None
        web3_client._w3.eth.wait_for_transaction_receipt.assert_not_called()

    def test_reverted_receipt(self, web3_client):
        function = web3_client._contract.functions.retireCredit.return_value
        function.transact.return_value = TX_HASH
        web3_client._w3.eth.wait_for_transaction_receipt.return_value = mined_receipt(0)

        result = web3_client.retire_credit(PRODUCER, 7, 10)

        assert isinstance(result, LedgerRejected)
        assert result.reason == "Transaction reverted"
        assert result.transaction_hash == Web3.to_hex(TX_HASH)

    def test_rpc_errors(self, web3_client):
        function = web3_client._contract.functions.issueCredit.return_value
        function.transact.side_effect = requests.exceptions.ReadTimeout("slow node")
        with pytest.raises(LedgerTimeoutError):
            issue(web3_client)

        function.transact.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(LedgerUnavailableError):
            issue(web3_client)

    @pytest.mark.parametrize(
        "error",
        [
            requests.exceptions.ConnectionError("node restarted"),
            requests.exceptions.ReadTimeout("slow node"),
        ],
    )
    def test_rpc_error_after_broadcast_keeps_hash(self, web3_client, error):
        function = web3_client._contract.functions.issueCredit.return_value
        function.transact.return_value = TX_HASH
        web3_client._w3.eth.wait_for_transaction_receipt.side_effect = error

        result = issue(web3_client)

        assert isinstance(result, LedgerTimedOut)
        assert result.transaction_hash == Web3.to_hex(TX_HASH)


class TestWeb3Reads:
    def test_receipt_not_found(self, web3_client):
        web3_client._w3.eth.get_transaction_receipt.side_effect = TransactionNotFound(
            "unknown transaction"
        )

        assert web3_client.get_receipt(Web3.to_hex(TX_HASH)) is None
        status = web3_client.get_transaction_status(Web3.to_hex(TX_HASH))
        assert status.status == "pending"

    def test_failed_receipt(self, web3_client):
        web3_client._w3.eth.get_transaction_receipt.return_value = mined_receipt(0)

        receipt = web3_client.get_receipt(Web3.to_hex(TX_HASH))

        assert receipt.succeeded is False
        assert receipt.events == []

    def test_credit_metadata(self, web3_client):
        producer = Web3.to_checksum_address(PRODUCER)
        web3_client._contract.functions.getCreditMetadata.return_value.call.return_value = (
            3,
            producer,
            "Solar",
            1790000000,
            500,
            "0xhash",
            False,
            0,
            "0x" + "0" * 40,
        )

        metadata = web3_client.get_credit_metadata(3)

        assert metadata.credit_id == 3
        assert metadata.producer == PRODUCER
        assert metadata.renewable_source_type == "Solar"
        assert metadata.hydrogen_amount == 500
        assert metadata.is_retired is False

    def test_unknown_credit_metadata(self, web3_client):
        call = web3_client._contract.functions.getCreditMetadata.return_value.call
        call.side_effect = ContractLogicError("execution reverted: Credit does not exist")

        with pytest.raises(NotFoundError):
            web3_client.get_credit_metadata(99)

    def test_verify_credit(self, web3_client):
        call = web3_client._contract.functions.verifyCredit.return_value.call
        call.return_value = True
        assert web3_client.verify_credit(3, "0xhash") is True

        call.side_effect = ContractLogicError("execution reverted")
        assert web3_client.verify_credit(3, "0xhash") is False

    def test_balance_rpc_failure(self, web3_client):
        call = web3_client._contract.functions.balanceOf.return_value.call
        call.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(LedgerUnavailableError):
            web3_client.get_balance(PRODUCER, 3)

    def test_query_events(self, web3_client):
        event = web3_client._contract.events.CreditIssued.return_value
        event.get_logs.return_value = [issued_log(1), issued_log(2)]

        events = web3_client.query_events(LedgerEventName.CREDIT_ISSUED, 10)

        assert [e.credit_id for e in events] == [1, 2]
        event.get_logs.assert_called_once_with(from_block=10, to_block="latest")

        with pytest.raises(ValidationError, match="Invalid block range"):
            web3_client.query_events(LedgerEventName.CREDIT_ISSUED, 10, 9)

    def test_not_connected(self):
        client = Web3LedgerClient("http://localhost:8545", "0x" + "1" * 40, "abi.json")

        assert client.is_connected is False
        with pytest.raises(LedgerUnavailableError):
            client.w3
        with pytest.raises(LedgerUnavailableError):
            client.get_total_issued()
