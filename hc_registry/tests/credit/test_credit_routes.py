from fastapi.testclient import TestClient

from hc_registry.core.models.base import LedgerIntentStatus
from hc_registry.credit import services as credit_services
from hc_registry.tests.conftest import SAMPLE_METADATA, wallet


def issue_payload(producer, **overrides):
    return {
        "producerAddress": producer.wallet_address,
        "renewableSourceType": "Solar",
        "hydrogenAmount": 500,
        "creditAmount": 100,
        "metadata": SAMPLE_METADATA,
        **overrides,
    }


class TestCreditRoutes:
    def test_issue_credit(
        self, api_client: TestClient, auth_headers, certifier, producer
    ):
        response = api_client.post(
            "/api/credits/issue",
            json=issue_payload(producer),
            headers=auth_headers(certifier),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Credit issued successfully"
        assert body["transactionHash"].startswith("0x")
        assert body["blockNumber"] == 1

        credit = body["credit"]
        assert credit["creditId"] == 0
        assert credit["currentOwnerId"] == producer.id
        assert credit["currentBalance"] == 100
        assert credit["renewableSourceType"] == "Solar"
        assert credit["status"] == "ISSUED"
        assert credit["ownershipHistory"][0]["type"] == "ISSUE"
        assert credit["detailedMetadata"]["productionFacility"]["name"] == (
            "North Sea Electrolyser 1"
        )

    def test_issue_credit_unauthenticated(self, api_client: TestClient, producer):
        response = api_client.post("/api/credits/issue", json=issue_payload(producer))

        assert response.status_code == 401
        assert response.json() == {
            "error": {"message": "Access denied. No token provided."}
        }

    def test_issue_credit_wrong_role(
        self, api_client: TestClient, auth_headers, producer
    ):
        response = api_client.post(
            "/api/credits/issue",
            json=issue_payload(producer),
            headers=auth_headers(producer),
        )

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["message"] == "Access denied. Insufficient permissions."
        assert error["details"] == [{"required": ["CERTIFIER"], "current": "PRODUCER"}]

    def test_issue_credit_validation(
        self, api_client: TestClient, auth_headers, certifier, producer
    ):
        response = api_client.post(
            "/api/credits/issue",
            json=issue_payload(producer, hydrogenAmount=0, producerAddress="0x123"),
            headers=auth_headers(certifier),
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["message"] == "Validation failed"
        fields = {detail["field"] for detail in error["details"]}
        assert fields == {"producerAddress", "hydrogenAmount"}

    def test_issue_credit_bad_production_period(
        self, api_client: TestClient, auth_headers, certifier, producer
    ):
        metadata = {
            "productionDetails": {
                "startDate": "2026-09-30T00:00:00Z",
                "endDate": "2026-09-01T00:00:00Z",
            }
        }
        response = api_client.post(
            "/api/credits/issue",
            json=issue_payload(producer, metadata=metadata),
            headers=auth_headers(certifier),
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["message"] == (
            "endDate must not be before startDate"
        )

    def test_issue_credit_ledger_timeout(
        self, api_client: TestClient, auth_headers, certifier, producer, ledger_client, store
    ):
        ledger_client.fail_next_write("timeout")

        response = api_client.post(
            "/api/credits/issue",
            json=issue_payload(producer),
            headers=auth_headers(certifier),
        )

        assert response.status_code == 504
        error = response.json()["error"]
        assert error["message"] == "Timed out waiting for ledger confirmation"
        assert error["details"][0]["intentId"] == store.list_intents()[0].id
        assert store.list_intents()[0].status == LedgerIntentStatus.OUTCOME_UNKNOWN

    def test_transfer_and_retire(
        self,
        api_client: TestClient,
        auth_headers,
        issued_credit,
        producer,
        consumer,
    ):
        response = api_client.post(
            "/api/credits/transfer",
            json={
                "creditId": issued_credit.credit_id,
                "recipientAddress": consumer.wallet_address.upper().replace("0X", "0x"),
                "amount": 40,
            },
            headers=auth_headers(producer),
        )

        assert response.status_code == 200
        credit = response.json()["credit"]
        assert credit["currentOwnerId"] == consumer.id
        assert credit["currentBalance"] == 40
        assert credit["holdings"] == {str(producer.id): 60, str(consumer.id): 40}
        assert credit["status"] == "TRANSFERRED"

        response = api_client.post(
            "/api/credits/retire",
            json={"creditId": issued_credit.credit_id, "amount": 40, "reason": "Scope 1 offset"},
            headers=auth_headers(consumer),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Credit retired successfully"
        assert body["credit"]["isRetired"] is True
        assert body["credit"]["currentBalance"] == 0
        assert body["credit"]["retirementDetails"]["retirementReason"] == "Scope 1 offset"

        response = api_client.post(
            "/api/credits/retire",
            json={"creditId": issued_credit.credit_id, "amount": 1, "reason": "Again"},
            headers=auth_headers(consumer),
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Credit is already retired"

    def test_transfer_insufficient_balance(
        self, api_client: TestClient, auth_headers, issued_credit, producer, consumer
    ):
        response = api_client.post(
            "/api/credits/transfer",
            json={
                "creditId": issued_credit.credit_id,
                "recipientAddress": consumer.wallet_address,
                "amount": 500,
            },
            headers=auth_headers(producer),
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["message"] == "Insufficient credit balance"
        assert error["details"] == [{"available": 100, "requested": 500}]

    def test_transfer_unknown_recipient(
        self, api_client: TestClient, auth_headers, issued_credit, producer
    ):
        response = api_client.post(
            "/api/credits/transfer",
            json={
                "creditId": issued_credit.credit_id,
                "recipientAddress": wallet(5),
                "amount": 5,
            },
            headers=auth_headers(producer),
        )

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Recipient not found"

    def test_transfer_not_owner(
        self, api_client: TestClient, auth_headers, issued_credit, consumer, consumer_2
    ):
        response = api_client.post(
            "/api/credits/transfer",
            json={
                "creditId": issued_credit.credit_id,
                "recipientAddress": consumer_2.wallet_address,
                "amount": 5,
            },
            headers=auth_headers(consumer),
        )

        assert response.status_code == 403
        assert response.json()["error"]["message"] == "You do not own this credit"

    def test_read_credit(
        self, api_client: TestClient, auth_headers, issued_credit, consumer
    ):
        response = api_client.get(
            f"/api/credits/{issued_credit.credit_id}", headers=auth_headers(consumer)
        )
        assert response.status_code == 200
        assert response.json()["credit"]["metadataHash"] == issued_credit.metadata_hash

        response = api_client.get("/api/credits/404", headers=auth_headers(consumer))
        assert response.status_code == 404
        assert response.json() == {"error": {"message": "Credit not found"}}

    def test_my_credits_status_filter(
        self, api_client: TestClient, auth_headers, issued_credit, producer
    ):
        response = api_client.get(
            "/api/credits/my-credits", headers=auth_headers(producer)
        )
        assert response.status_code == 200
        assert response.json()["pagination"]["totalCredits"] == 1

        response = api_client.get(
            "/api/credits/my-credits",
            params={"status": "RETIRED"},
            headers=auth_headers(producer),
        )
        assert response.json()["credits"] == []

    def test_produced_credits_pagination(
        self,
        api_client: TestClient,
        auth_headers,
        certifier,
        producer,
        store,
        ledger_client,
        issue_request_factory,
    ):
        for _ in range(25):
            credit_services.issue_credit(
                certifier, issue_request_factory(producer), store, ledger_client
            )

        response = api_client.get(
            "/api/credits/produced-credits",
            params={"page": 2, "limit": 10},
            headers=auth_headers(producer),
        )

        assert response.status_code == 200
        body = response.json()
        assert [c["creditId"] for c in body["credits"]] == list(range(14, 4, -1))
        assert body["pagination"] == {
            "currentPage": 2,
            "totalPages": 3,
            "hasNext": True,
            "hasPrev": True,
            "totalCredits": 25,
        }

        response = api_client.get(
            "/api/credits/produced-credits",
            params={"page": 3, "limit": 10},
            headers=auth_headers(producer),
        )
        assert len(response.json()["credits"]) == 5
        assert response.json()["pagination"]["hasNext"] is False

    def test_pagination_limit_is_capped(
        self, api_client: TestClient, auth_headers, producer
    ):
        response = api_client.get(
            "/api/credits/my-credits",
            params={"limit": 1000},
            headers=auth_headers(producer),
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "limit"

    def test_statistics(
        self, api_client: TestClient, auth_headers, issued_credit, consumer
    ):
        response = api_client.get(
            "/api/credits/statistics", headers=auth_headers(consumer)
        )

        assert response.status_code == 200
        assert response.json() == {
            "totalCredits": 100,
            "totalHydrogen": 1000,
            "activeCredits": 100,
            "retiredCredits": 0,
        }
