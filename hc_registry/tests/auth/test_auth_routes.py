import datetime

from fastapi.testclient import TestClient
from jose import jwt

from hc_registry.authentication.services import create_access_token
from hc_registry.core.models.base import UserRoles
from hc_registry.settings import settings
from hc_registry.tests.conftest import PASSWORD
from hc_registry.user.models import User


def registration(**overrides):
    return {
        "username": "h2_producer",
        "email": "Ops@GreenH2.example",
        "password": "secret1",
        "walletAddress": "0x" + "Ab" * 20,
        "role": "PRODUCER",
        "organization": "Green H2 GmbH",
        "profile": {"firstName": "Ada", "lastName": "Weber"},
        **overrides,
    }


class TestRegistration:
    def test_register(self, api_client: TestClient):
        response = api_client.post("/api/auth/register", json=registration())

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "User registered successfully"
        assert body["tokenType"] == "bearer"
        assert body["user"]["email"] == "ops@greenh2.example"
        assert body["user"]["walletAddress"] == "0x" + "ab" * 20
        assert body["user"]["role"] == "PRODUCER"
        assert body["user"]["profile"] == {"firstName": "Ada", "lastName": "Weber"}
        assert body["user"]["settings"]["privacy"] == {"publicProfile": False}
        assert "hashedPassword" not in body["user"]

        claims = jwt.decode(
            body["token"], settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        assert claims["sub"] == str(body["user"]["id"])
        assert claims["role"] == "PRODUCER"
        assert claims["walletAddress"] == "0x" + "ab" * 20

    def test_register_duplicate(self, api_client: TestClient, producer: User):
        for duplicate in (
            {"email": producer.email},
            {"username": producer.username},
            {"walletAddress": producer.wallet_address.upper().replace("0X", "0x")},
        ):
            response = api_client.post(
                "/api/auth/register", json=registration(**duplicate)
            )
            assert response.status_code == 400
            assert response.json() == {
                "error": {
                    "message": "User already exists with this email, username, or wallet address"
                }
            }

    def test_register_validation(self, api_client: TestClient):
        response = api_client.post(
            "/api/auth/register",
            json=registration(
                email="not-an-email", password="123", walletAddress="0x12", role="ADMIN"
            ),
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["message"] == "Validation failed"
        fields = {detail["field"] for detail in error["details"]}
        assert fields == {"email", "password", "walletAddress", "role"}


class TestLogin:
    def test_login(self, api_client: TestClient, consumer: User):
        response = api_client.post(
            "/api/auth/login",
            json={"email": consumer.email.upper(), "password": PASSWORD},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Login successful"
        assert body["token"]
        assert body["user"]["id"] == consumer.id
        assert body["user"]["lastLogin"] is not None

    def test_login_fail(self, api_client: TestClient, consumer: User, user_factory):
        inactive = user_factory(UserRoles.CONSUMER, "inactive", is_active=False)

        for email, password in (
            (consumer.email, "wrong_password"),
            ("incorrect@wrong.com", PASSWORD),
            (inactive.email, PASSWORD),
        ):
            response = api_client.post(
                "/api/auth/login", json={"email": email, "password": password}
            )
            assert response.status_code == 401
            assert response.json() == {"error": {"message": "Invalid credentials"}}


class TestCurrentUser:
    def test_me(self, api_client: TestClient, auth_headers, consumer: User):
        response = api_client.get("/api/auth/me", headers=auth_headers(consumer))

        assert response.status_code == 200
        assert response.json()["user"]["username"] == consumer.username

    def test_me_without_token(self, api_client: TestClient):
        response = api_client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json() == {
            "error": {"message": "Access denied. No token provided."}
        }

    def test_expired_token(self, api_client: TestClient, consumer: User):
        token = create_access_token(
            {"sub": str(consumer.id)}, expires_delta=datetime.timedelta(minutes=-5)
        )
        response = api_client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Token expired."

    def test_invalid_token(self, api_client: TestClient):
        for token in ("not-a-jwt", jwt.encode({"sub": "1"}, "other-secret", algorithm="HS256")):
            response = api_client.get(
                "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
            )
            assert response.status_code == 401
            assert response.json()["error"]["message"] == "Invalid token."

    def test_token_for_unknown_user(self, api_client: TestClient):
        token = create_access_token({"sub": "4040"})
        response = api_client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid token or user not active."


class TestProfile:
    def test_update_profile(self, api_client: TestClient, auth_headers, producer: User):
        response = api_client.put(
            "/api/auth/profile",
            json={
                "organization": "Nordic Hydrogen AS",
                "profile": {"lastName": "Larsen", "address": {"city": "Bergen"}},
                "settings": {"privacy": {"publicProfile": True}},
            },
            headers=auth_headers(producer),
        )

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["organization"] == "Nordic Hydrogen AS"
        assert user["profile"]["firstName"] == "Pat"
        assert user["profile"]["lastName"] == "Larsen"
        assert user["profile"]["address"] == {"city": "Bergen"}
        assert user["settings"]["privacy"] == {"publicProfile": True}

    def test_update_profile_username_taken(
        self, api_client: TestClient, auth_headers, producer: User, consumer: User
    ):
        response = api_client.put(
            "/api/auth/profile",
            json={"username": consumer.username},
            headers=auth_headers(producer),
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Username already taken"

    def test_change_password(self, api_client: TestClient, auth_headers, consumer: User):
        response = api_client.post(
            "/api/auth/change-password",
            json={"currentPassword": "wrong", "newPassword": "n3w-secret"},
            headers=auth_headers(consumer),
        )
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Current password is incorrect"

        response = api_client.post(
            "/api/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": "n3w-secret"},
            headers=auth_headers(consumer),
        )
        assert response.status_code == 200
        assert response.json() == {"message": "Password changed successfully"}

        response = api_client.post(
            "/api/auth/login", json={"email": consumer.email, "password": "n3w-secret"}
        )
        assert response.status_code == 200


class TestUserDirectory:
    def test_list_users_requires_regulator(
        self, api_client: TestClient, auth_headers, consumer: User, regulator: User
    ):
        response = api_client.get("/api/auth/users", headers=auth_headers(consumer))
        assert response.status_code == 403

        response = api_client.get("/api/auth/users", headers=auth_headers(regulator))
        assert response.status_code == 200
        assert {u["id"] for u in response.json()["users"]} == {consumer.id, regulator.id}

    def test_users_by_role_are_public(
        self, api_client: TestClient, auth_headers, producer: User, consumer: User, user_factory
    ):
        user_factory(UserRoles.CONSUMER, "dormant", is_active=False)

        response = api_client.get(
            "/api/auth/users/CONSUMER", headers=auth_headers(producer)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "CONSUMER"
        assert [u["username"] for u in body["users"]] == [consumer.username]
        assert "email" not in body["users"][0]
        assert "walletAddress" not in body["users"][0]

    def test_unknown_role(self, api_client: TestClient, auth_headers, producer: User):
        response = api_client.get("/api/auth/users/ADMIN", headers=auth_headers(producer))
        assert response.status_code == 400
