import pytest
from fastapi.testclient import TestClient

from hc_registry.core.exceptions import LedgerTimeoutError
from hc_registry.core.models.base import RenewableSourceType, UserRoles
from hc_registry.credit import services as credit_services
from hc_registry.credit.schemas import TransferCreditRequest


class TestAuditCreditRoutes:
    def test_list_credits_with_filters(
        self,
        api_client: TestClient,
        auth_headers,
        certifier,
        producer,
        regulator,
        store,
        ledger_client,
        issue_request_factory,
    ):
        for source in (
            RenewableSourceType.SOLAR,
            RenewableSourceType.WIND,
            RenewableSourceType.WIND,
        ):
            credit_services.issue_credit(
                certifier,
                issue_request_factory(producer, source=source),
                store,
                ledger_client,
            )

        response = api_client.get("/api/audit/credits", headers=auth_headers(regulator))
        assert response.status_code == 200
        assert response.json()["pagination"]["totalCredits"] == 3

        response = api_client.get(
            "/api/audit/credits",
            params={"renewableSourceType": "Wind", "producer": producer.id},
            headers=auth_headers(certifier),
        )
        body = response.json()
        assert body["pagination"]["totalCredits"] == 2
        assert {c["renewableSourceType"] for c in body["credits"]} == {"Wind"}

    def test_audit_requires_permission(
        self, api_client: TestClient, auth_headers, consumer, producer
    ):
        for user in (consumer, producer):
            response = api_client.get(
                "/api/audit/credits", headers=auth_headers(user)
            )
            assert response.status_code == 403

    def test_credit_detail_uses_public_profiles(
        self, api_client: TestClient, auth_headers, issued_credit, regulator, producer
    ):
        response = api_client.get(
            f"/api/audit/credits/{issued_credit.credit_id}",
            headers=auth_headers(regulator),
        )

        assert response.status_code == 200
        credit = response.json()["credit"]
        assert credit["producer"]["id"] == producer.id
        assert credit["producer"]["profile"] == {"firstName": "Pat"}
        assert "email" not in credit["producer"]
        assert credit["currentOwner"]["id"] == producer.id
        assert credit["certifier"]["role"] == "CERTIFIER"

    def test_ownership_history(
        self,
        api_client: TestClient,
        auth_headers,
        issued_credit,
        producer,
        consumer,
        certifier,
        store,
        ledger_client,
    ):
        credit_services.transfer_credit(
            producer,
            TransferCreditRequest(
                credit_id=issued_credit.credit_id,
                recipient_address=consumer.wallet_address,
                amount=30,
            ),
            store,
            ledger_client,
        )

        response = api_client.get(
            f"/api/audit/credits/{issued_credit.credit_id}/history",
            headers=auth_headers(certifier),
        )

        assert response.status_code == 200
        body = response.json()
        assert [e["type"] for e in body["ownershipHistory"]] == ["ISSUE", "TRANSFER"]
        assert body["ownershipHistory"][1]["fromOwner"] == producer.id
        assert body["currentBalance"] == 30
        assert body["replayedBalance"] == 30
        assert body["isConsistent"] is True
        assert body["violations"] == []

    def test_verify_credit(
        self, api_client: TestClient, auth_headers, issued_credit, certifier, store
    ):
        response = api_client.post(
            f"/api/audit/verify/{issued_credit.credit_id}",
            json={"isVerified": True, "notes": "Site visit 2026-10-12"},
            headers=auth_headers(certifier),
        )

        assert response.status_code == 200
        credit = response.json()["credit"]
        assert credit["isVerified"] is True
        assert credit["verificationStatus"]["verifiedBy"] == certifier.id
        assert credit["verificationStatus"]["verificationNotes"] == "Site visit 2026-10-12"
        assert credit["currentBalance"] == 100
        assert credit["status"] == "ISSUED"
        assert credit["version"] == issued_credit.version + 1

    def test_verify_unknown_credit(
        self, api_client: TestClient, auth_headers, regulator
    ):
        response = api_client.post(
            "/api/audit/verify/12", json={"isVerified": True}, headers=auth_headers(regulator)
        )
        assert response.status_code == 404

    def test_statistics(
        self,
        api_client: TestClient,
        auth_headers,
        certifier,
        producer,
        regulator,
        store,
        ledger_client,
        issue_request_factory,
    ):
        credit_services.issue_credit(
            certifier,
            issue_request_factory(producer, source=RenewableSourceType.HYDRO, credit_amount=10),
            store,
            ledger_client,
        )
        credit_services.issue_credit(
            certifier,
            issue_request_factory(producer, source=RenewableSourceType.WIND, credit_amount=20),
            store,
            ledger_client,
        )

        response = api_client.get(
            "/api/audit/statistics", headers=auth_headers(regulator)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["overview"]["totalCredits"] == 2
        assert body["overview"]["totalCreditAmount"] == 30
        assert body["overview"]["activeCredits"] == 2
        assert body["overview"]["retiredCredits"] == 0
        assert {s["renewableSourceType"] for s in body["sourceTypeStats"]} == {
            "Hydro",
            "Wind",
        }
        assert body["statusStats"] == [{"status": "ISSUED", "count": 2}]


class TestAuditLedgerRoutes:
    def test_blockchain_events(
        self, api_client: TestClient, auth_headers, issued_credit, regulator
    ):
        response = api_client.get(
            "/api/audit/blockchain-events", headers=auth_headers(regulator)
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Event name is required"

        response = api_client.get(
            "/api/audit/blockchain-events",
            params={"eventName": "CreditIssued"},
            headers=auth_headers(regulator),
        )
        assert response.status_code == 200
        events = response.json()["events"]
        assert len(events) == 1
        assert events[0]["creditId"] == issued_credit.credit_id
        assert events[0]["args"]["metadataHash"] == issued_credit.metadata_hash

    def test_intents_and_reconcile(
        self,
        api_client: TestClient,
        auth_headers,
        issued_credit,
        producer,
        consumer,
        regulator,
        certifier,
        store,
        ledger_client,
    ):
        ledger_client.fail_next_write("timeout")
        with pytest.raises(LedgerTimeoutError):
            credit_services.transfer_credit(
                producer,
                TransferCreditRequest(
                    credit_id=issued_credit.credit_id,
                    recipient_address=consumer.wallet_address,
                    amount=60,
                ),
                store,
                ledger_client,
            )
        ledger_client.mine_pending()

        response = api_client.get(
            "/api/audit/intents",
            params={"status": "OUTCOME_UNKNOWN"},
            headers=auth_headers(regulator),
        )
        assert response.status_code == 200
        intents = response.json()["intents"]
        assert len(intents) == 1
        assert intents[0]["operation"] == "TRANSFER"

        response = api_client.post("/api/audit/reconcile", headers=auth_headers(certifier))
        assert response.status_code == 403

        response = api_client.post("/api/audit/reconcile", headers=auth_headers(regulator))
        assert response.status_code == 200
        assert response.json()["completed"] == 1

        credit = credit_services.get_credit(issued_credit.credit_id, store)
        assert credit.current_owner_id == consumer.id
        assert credit.current_balance == 60


class TestAuditUserRoutes:
    def test_list_users(
        self, api_client: TestClient, auth_headers, regulator, producer, user_factory
    ):
        user_factory(UserRoles.PRODUCER, "verified_producer", is_verified=True)

        response = api_client.get(
            "/api/audit/users",
            params={"role": "PRODUCER"},
            headers=auth_headers(regulator),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["totalUsers"] == 2
        assert body["roleStats"]["PRODUCER"] == {"count": 2, "verifiedCount": 1}
        assert body["roleStats"]["CERTIFIER"] == {"count": 0, "verifiedCount": 0}
        assert body["roleStats"]["REGULATOR"] == {"count": 1, "verifiedCount": 0}

        response = api_client.get(
            "/api/audit/users",
            params={"isVerified": True},
            headers=auth_headers(regulator),
        )
        assert [u["username"] for u in response.json()["users"]] == ["verified_producer"]

    def test_user_management_is_for_regulators(
        self, api_client: TestClient, auth_headers, certifier
    ):
        response = api_client.get("/api/audit/users", headers=auth_headers(certifier))
        assert response.status_code == 403

    def test_deactivate_user(
        self, api_client: TestClient, auth_headers, regulator, consumer
    ):
        consumer_headers = auth_headers(consumer)

        response = api_client.patch(
            f"/api/audit/users/{consumer.id}",
            json={"isActive": False, "isVerified": True},
            headers=auth_headers(regulator),
        )

        assert response.status_code == 200
        assert response.json()["user"]["isActive"] is False
        assert response.json()["user"]["isVerified"] is True

        response = api_client.get("/api/auth/me", headers=consumer_headers)
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid token or user not active."

    def test_update_status_requires_changes(
        self, api_client: TestClient, auth_headers, regulator, consumer
    ):
        response = api_client.patch(
            f"/api/audit/users/{consumer.id}", json={}, headers=auth_headers(regulator)
        )
        assert response.status_code == 400

        response = api_client.patch(
            "/api/audit/users/9999",
            json={"isActive": False},
            headers=auth_headers(regulator),
        )
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "User not found"
