import re
import urllib.parse
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from authgate.core.auth import consents_auth, cruds_auth, models_auth
from authgate.core.clients import cruds_clients, models_clients
from authgate.core.clients.utils_clients import create_default_client
from authgate.core.users import cruds_users, models_users
from authgate.core.utils import security
from tests.commons import (
    TEST_PASSWORD,
    TEST_TOKEN_KEYS,
    TestingSessionLocal,
    create_access_token_with_record,
    create_client,
    create_user,
    settings,
)

CSRF_TOKEN_PATTERN = re.compile(r'name="csrf_token" value="([^"]+)"')

user: models_users.CoreUser
default_client: models_clients.OAuthClient
consenting_user: models_users.CoreUser
consenting_default_client: models_clients.OAuthClient
other_user: models_users.CoreUser
other_user_client: models_clients.OAuthClient


@pytest_asyncio.fixture(scope="module", autouse=True)
async def init_objects() -> None:
    global user, default_client, consenting_user, consenting_default_client
    global other_user, other_user_client

    user = await create_user(username="ada", email="ada@authgate.test")
    consenting_user = await create_user()
    other_user = await create_user()
    other_user_client = await create_client(owner=other_user)

    async with TestingSessionLocal() as db:
        default_client = await create_default_client(
            db=db,
            user_id=user.id,
            settings=settings,
        )
        consenting_default_client = await create_default_client(
            db=db,
            user_id=consenting_user.id,
            settings=settings,
        )
        await consents_auth.upsert_consent(
            db=db,
            user_id=consenting_user.id,
            client_id=consenting_default_client.id,
            granted=True,
        )
        await db.commit()


def get_csrf_token(html: str) -> str:
    match = CSRF_TOKEN_PATTERN.search(html)
    assert match is not None
    return match.group(1)


def get_location(response: httpx.Response) -> tuple[str, dict[str, str]]:
    """Return the path and the query parameters of a redirection"""
    location = urllib.parse.urlparse(response.headers["location"])
    return location.path, dict(urllib.parse.parse_qsl(location.query))


def login(client: TestClient, username: str, password: str) -> httpx.Response:
    client.cookies.clear()
    csrf_token = get_csrf_token(client.get("/login").text)
    return client.post(
        "/login",
        data={
            "csrf_token": csrf_token,
            "username": username,
            "password": password,
        },
        follow_redirects=False,
    )


def authenticate(client: TestClient, username: str) -> None:
    """
    Go through the whole flow for a user who already approved their default client,
    the access token and the refresh token are then stored in the cookies of the client
    """
    response = login(client, username, TEST_PASSWORD)
    authorize_response = client.get(
        response.headers["location"],
        follow_redirects=False,
    )
    assert authorize_response.status_code == 302
    callback_response = client.get(
        authorize_response.headers["location"],
        follow_redirects=False,
    )
    assert callback_response.status_code == 302


async def get_access_tokens(user_id: str) -> list[models_auth.AccessToken]:
    async with TestingSessionLocal() as db:
        result = await db.execute(
            select(models_auth.AccessToken).where(
                models_auth.AccessToken.user_id == user_id,
            ),
        )
        return list(result.scalars().all())


async def get_refresh_tokens(user_id: str) -> list[models_auth.RefreshToken]:
    async with TestingSessionLocal() as db:
        result = await db.execute(
            select(models_auth.RefreshToken).where(
                models_auth.RefreshToken.user_id == user_id,
            ),
        )
        return list(result.scalars().all())


async def get_authorization_codes(user_id: str) -> list[models_auth.AuthorizationCode]:
    async with TestingSessionLocal() as db:
        result = await db.execute(
            select(models_auth.AuthorizationCode).where(
                models_auth.AuthorizationCode.user_id == user_id,
            ),
        )
        return list(result.scalars().all())


async def test_authorization_code_flow(client: TestClient) -> None:
    client.cookies.clear()

    # Registration
    csrf_token = get_csrf_token(client.get("/register").text)
    response = client.post(
        "/register",
        data={
            "csrf_token": csrf_token,
            "username": "grace",
            "email": "Grace@AuthGate.test",
            "password": "a_long_enough_password",
            "first_name": "Grace",
            "last_name": "Hopper",
        },
        follow_redirects=False,
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/login"

    async with TestingSessionLocal() as db:
        registered_user = await cruds_users.get_user_by_username(
            db=db,
            username="grace",
        )
        assert registered_user is not None
        assert registered_user.email == "grace@authgate.test"
        registered_client = await cruds_clients.get_client_by_name(
            db=db,
            name=f"d{registered_user.id}",
        )
        assert registered_client is not None
    assert registered_client.redirect_uri == "/callback"

    # Login with the email
    response = login(client, "grace@authgate.test", "a_long_enough_password")
    assert response.status_code == 302
    path, params = get_location(response)
    assert path == "/authorize"
    assert params["client_id"] == registered_client.id
    assert params["redirect_uri"] == "/callback"
    state = params["state"]
    assert client.cookies["state"] == state

    # First authorization of the client: the consent prompt is rendered
    response = client.get(response.headers["location"], follow_redirects=False)
    assert response.status_code == 200
    assert "Approve" in response.text
    assert await get_authorization_codes(registered_user.id) == []

    response = client.post(
        "/authorize",
        data={
            "client_id": registered_client.id,
            "redirect_uri": "/callback",
            "state": state,
            "decision": "approve",
        },
        follow_redirects=False,
    )
    assert response.status_code == 302
    path, params = get_location(response)
    assert path == "/callback"
    assert params["state"] == state
    code = params["code"]

    async with TestingSessionLocal() as db:
        assert await consents_auth.has_consent(
            db=db,
            user_id=registered_user.id,
            client_id=registered_client.id,
        )
    (authorization_code,) = await get_authorization_codes(registered_user.id)
    assert authorization_code.code == code
    assert authorization_code.expires_at <= datetime.now(UTC) + timedelta(minutes=10)
    assert authorization_code.expires_at > datetime.now(UTC) + timedelta(minutes=9)

    # Token exchange
    response = client.get(
        "/callback",
        params={"code": code, "state": state},
        follow_redirects=False,
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/dashboard"
    assert await get_authorization_codes(registered_user.id) == []

    access_token = client.cookies["access_token"]
    payload = security.decode_access_token(keys=TEST_TOKEN_KEYS, token=access_token)
    assert payload["sub"] == registered_user.id
    assert payload["cid"] == registered_client.id
    assert payload["exp"] - payload["iat"] == 60 * 60
    (refresh_token,) = await get_refresh_tokens(registered_user.id)
    assert client.cookies["refresh_token"] == refresh_token.token
    assert refresh_token.expires_at > datetime.now(UTC) + timedelta(days=29)

    set_cookie_headers = response.headers.get_list("set-cookie")
    access_token_cookie = next(
        header for header in set_cookie_headers if header.startswith("access_token=")
    )
    assert "HttpOnly" in access_token_cookie
    assert "Max-Age=3600" in access_token_cookie
    assert "SameSite=lax" in access_token_cookie

    # Protected page
    response = client.get("/dashboard")
    assert response.status_code == 200
    assert response.json()["user_id"] == registered_user.id
    assert "Grace" in response.json()["message"]

    # A code can only be exchanged once
    response = client.get(
        "/callback",
        params={"code": code, "state": state},
        follow_redirects=False,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"
    assert len(await get_refresh_tokens(registered_user.id)) == 1


async def test_login_with_username(client: TestClient) -> None:
    response = login(client, "ada", TEST_PASSWORD)

    assert response.status_code == 302
    path, params = get_location(response)
    assert path == "/authorize"
    assert params["client_id"] == default_client.id


def test_login_with_invalid_password(client: TestClient) -> None:
    response = login(client, "ada", "not_the_password")

    assert response.status_code == 302
    assert response.headers["location"] == "/login"
    assert "state" not in response.cookies


def test_login_with_unknown_user(client: TestClient) -> None:
    response = login(client, "nobody@authgate.test", TEST_PASSWORD)

    assert response.status_code == 302
    assert response.headers["location"] == "/login"


def test_login_without_csrf_token(client: TestClient) -> None:
    client.cookies.clear()
    client.get("/login")

    response = client.post(
        "/login",
        data={"username": "ada", "password": TEST_PASSWORD},
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_state"


def test_login_csrf_token_can_only_be_used_once(client: TestClient) -> None:
    client.cookies.clear()
    csrf_token = get_csrf_token(client.get("/login").text)
    data = {"csrf_token": csrf_token, "username": "ada", "password": "wrong"}

    first_response = client.post("/login", data=data, follow_redirects=False)
    second_response = client.post("/login", data=data, follow_redirects=False)

    assert first_response.status_code == 302
    assert second_response.status_code == 400


def test_authorize_without_session(client: TestClient) -> None:
    client.cookies.clear()

    response = client.get(
        "/authorize",
        params={
            "client_id": default_client.id,
            "redirect_uri": "/callback",
            "state": "a_state",
        },
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == "/login"


def test_authorize_with_missing_parameters(client: TestClient) -> None:
    login(client, "ada", TEST_PASSWORD)

    response = client.get("/authorize", params={"client_id": default_client.id})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_authorize_client_of_an_other_user(client: TestClient) -> None:
    response = login(client, "ada", TEST_PASSWORD)
    _, params = get_location(response)

    response = client.get(
        "/authorize",
        params={
            "client_id": other_user_client.id,
            "redirect_uri": other_user_client.redirect_uri,
            "state": params["state"],
        },
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "unauthorized_client"


def test_authorize_with_an_other_redirect_uri(client: TestClient) -> None:
    response = login(client, "ada", TEST_PASSWORD)
    _, params = get_location(response)

    response = client.get(
        "/authorize",
        params={
            "client_id": default_client.id,
            "redirect_uri": "https://attacker.example/callback",
            "state": params["state"],
        },
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "unauthorized_client"


async def test_authorize_with_existing_consent(client: TestClient) -> None:
    response = login(client, consenting_user.username, TEST_PASSWORD)
    _, params = get_location(response)

    response = client.get(response.headers["location"], follow_redirects=False)

    assert response.status_code == 302
    path, callback_params = get_location(response)
    assert path == "/callback"
    assert callback_params["state"] == params["state"]
    (authorization_code,) = [
        authorization_code
        for authorization_code in await get_authorization_codes(consenting_user.id)
        if authorization_code.code == callback_params["code"]
    ]
    assert authorization_code.client_id == consenting_default_client.id


async def test_deny_consent(client: TestClient) -> None:
    response = login(client, "ada", TEST_PASSWORD)
    _, params = get_location(response)

    response = client.post(
        "/authorize",
        data={
            "client_id": default_client.id,
            "redirect_uri": "/callback",
            "state": params["state"],
            "decision": "deny",
        },
        follow_redirects=False,
    )

    assert response.status_code == 403
    assert await get_authorization_codes(user.id) == []
    async with TestingSessionLocal() as db:
        assert not await consents_auth.has_consent(
            db=db,
            user_id=user.id,
            client_id=default_client.id,
        )


async def test_consent_decision_with_an_other_state(client: TestClient) -> None:
    login(client, "ada", TEST_PASSWORD)

    response = client.post(
        "/authorize",
        data={
            "client_id": default_client.id,
            "redirect_uri": "/callback",
            "state": "a_forged_state",
            "decision": "approve",
        },
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_state"
    assert await get_authorization_codes(user.id) == []


async def test_callback_with_an_other_state(client: TestClient) -> None:
    response = login(client, consenting_user.username, TEST_PASSWORD)
    response = client.get(response.headers["location"], follow_redirects=False)
    _, params = get_location(response)
    access_tokens_before = await get_access_tokens(consenting_user.id)

    response = client.get(
        "/callback",
        params={"code": params["code"], "state": "a_forged_state"},
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_state"
    assert "access_token" not in response.cookies
    assert await get_access_tokens(consenting_user.id) == access_tokens_before
    # The code was not redeemed
    assert params["code"] in [
        authorization_code.code
        for authorization_code in await get_authorization_codes(consenting_user.id)
    ]


async def test_callback_without_state_cookie(client: TestClient) -> None:
    response = login(client, consenting_user.username, TEST_PASSWORD)
    response = client.get(response.headers["location"], follow_redirects=False)
    _, params = get_location(response)
    client.cookies.delete("state")

    response = client.get(
        "/callback",
        params={"code": params["code"], "state": params["state"]},
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_state"


async def test_callback_with_expired_code(client: TestClient) -> None:
    response = login(client, consenting_user.username, TEST_PASSWORD)
    response = client.get(response.headers["location"], follow_redirects=False)
    _, params = get_location(response)

    async with TestingSessionLocal() as db:
        authorization_code = await cruds_auth.get_authorization_code_by_code(
            db=db,
            code=params["code"],
        )
        assert authorization_code is not None
        authorization_code.expires_at = datetime.now(UTC) - timedelta(seconds=1)
        await db.commit()

    response = client.get(
        "/callback",
        params={"code": params["code"], "state": params["state"]},
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"


def test_callback_with_unknown_code(client: TestClient) -> None:
    response = login(client, consenting_user.username, TEST_PASSWORD)
    _, params = get_location(response)

    response = client.get(
        "/callback",
        params={"code": "an_unknown_code", "state": params["state"]},
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json() == {
        "error": "invalid_grant",
        "error_description": "Invalid authorization code",
    }


async def test_validate_endpoint(client: TestClient) -> None:
    access_token, _ = await create_access_token_with_record(
        user_id=user.id,
        client_id=default_client.id,
    )

    response = client.post("/validate", data={"access_token": access_token})

    assert response.status_code == 200
    assert response.json()["active"] is True
    assert response.json()["sub"] == user.id
    assert response.json()["client_id"] == default_client.id


async def test_validate_endpoint_with_expired_token(client: TestClient) -> None:
    access_token, _ = await create_access_token_with_record(
        user_id=user.id,
        client_id=default_client.id,
        expires_delta=timedelta(minutes=-1),
    )

    response = client.post("/validate", data={"access_token": access_token})

    assert response.status_code == 401
    assert response.json() == {"active": False}


def test_validate_endpoint_with_invalid_token(client: TestClient) -> None:
    response = client.post("/validate", data={"access_token": "not_a_jwt"})

    assert response.status_code == 401
    assert response.json() == {"active": False}


async def test_logout(client: TestClient) -> None:
    authenticate(client, consenting_user.username)
    access_token = client.cookies["access_token"]
    refresh_token = client.cookies["refresh_token"]
    jti = security.decode_access_token(keys=TEST_TOKEN_KEYS, token=access_token)["jti"]

    response = client.post("/logout", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/login"
    assert "access_token" not in client.cookies
    assert "refresh_token" not in client.cookies
    assert "state" not in client.cookies
    async with TestingSessionLocal() as db:
        assert await cruds_auth.get_access_token_by_jti(db=db, jti=jti) is None
        assert (
            await cruds_auth.get_refresh_token_by_token(db=db, token=refresh_token)
            is None
        )

    # Logging out again with the stale credentials is not an error
    client.cookies.set("access_token", access_token)
    client.cookies.set("refresh_token", refresh_token)
    response = client.post("/logout", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/login"


def test_logout_without_credentials(client: TestClient) -> None:
    client.cookies.clear()

    response = client.post("/logout", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/login"


def test_logout_with_invalid_access_token(client: TestClient) -> None:
    client.cookies.clear()
    client.cookies.set("access_token", "not_a_jwt")

    response = client.post("/logout", follow_redirects=False)

    assert response.status_code == 302


def test_register_with_an_existing_email(client: TestClient) -> None:
    client.cookies.clear()
    csrf_token = get_csrf_token(client.get("/register").text)

    response = client.post(
        "/register",
        data={
            "csrf_token": csrf_token,
            "username": "another_ada",
            "email": "ada@authgate.test",
            "password": "a_long_enough_password",
            "first_name": "Ada",
            "last_name": "Lovelace",
        },
        follow_redirects=False,
    )

    assert response.status_code == 400


def test_register_with_a_short_password(client: TestClient) -> None:
    client.cookies.clear()
    csrf_token = get_csrf_token(client.get("/register").text)

    response = client.post(
        "/register",
        data={
            "csrf_token": csrf_token,
            "username": "charles",
            "email": "charles@authgate.test",
            "password": "short",
            "first_name": "Charles",
            "last_name": "Babbage",
        },
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_jwks(client: TestClient) -> None:
    response = client.get("/.well-known/jwks.json")

    assert response.status_code == 200
    (key,) = response.json()["keys"]
    assert key["kty"] == "RSA"
    assert key["kid"] == "RSA-JWK-1"
    assert key["alg"] == "RS256"


async def failing_crud(*args, **kwargs):
    raise SQLAlchemyError("Database unavailable")


def assert_server_error(response: httpx.Response) -> None:
    assert response.status_code == 500
    assert response.headers["content-type"] == "application/json"
    assert response.json() == {
        "error": "server_error",
        "error_description": "Internal server error",
    }
    assert "access_token" not in response.cookies
    assert "refresh_token" not in response.cookies


async def test_callback_with_token_storage_failure(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = login(client, consenting_user.username, TEST_PASSWORD)
    response = client.get(response.headers["location"], follow_redirects=False)
    _, params = get_location(response)
    access_tokens_before = await get_access_tokens(consenting_user.id)
    refresh_tokens_before = await get_refresh_tokens(consenting_user.id)

    monkeypatch.setattr(cruds_auth, "create_refresh_token", failing_crud)
    response = client.get(
        "/callback",
        params={"code": params["code"], "state": params["state"]},
        follow_redirects=False,
    )

    assert_server_error(response)
    assert await get_access_tokens(consenting_user.id) == access_tokens_before
    assert await get_refresh_tokens(consenting_user.id) == refresh_tokens_before
    # The redemption of the code is rolled back with the tokens
    assert params["code"] in [
        authorization_code.code
        for authorization_code in await get_authorization_codes(consenting_user.id)
    ]


async def test_callback_with_code_storage_failure(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = login(client, consenting_user.username, TEST_PASSWORD)
    response = client.get(response.headers["location"], follow_redirects=False)
    _, params = get_location(response)
    access_tokens_before = await get_access_tokens(consenting_user.id)

    monkeypatch.setattr(cruds_auth, "claim_authorization_code_by_code", failing_crud)
    response = client.get(
        "/callback",
        params={"code": params["code"], "state": params["state"]},
        follow_redirects=False,
    )

    assert_server_error(response)
    assert await get_access_tokens(consenting_user.id) == access_tokens_before


async def test_authorize_with_code_storage_failure(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = login(client, consenting_user.username, TEST_PASSWORD)

    monkeypatch.setattr(cruds_auth, "create_authorization_code", failing_crud)
    response = client.get(response.headers["location"], follow_redirects=False)

    assert_server_error(response)
    assert "location" not in response.headers


async def test_consent_decision_with_storage_failure(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = login(client, "ada", TEST_PASSWORD)
    _, params = get_location(response)

    monkeypatch.setattr(cruds_auth, "upsert_consent", failing_crud)
    response = client.post(
        "/authorize",
        data={
            "client_id": default_client.id,
            "redirect_uri": "/callback",
            "state": params["state"],
            "decision": "approve",
        },
        follow_redirects=False,
    )

    assert_server_error(response)
    assert await get_authorization_codes(user.id) == []
    async with TestingSessionLocal() as db:
        assert not await consents_auth.has_consent(
            db=db,
            user_id=user.id,
            client_id=default_client.id,
        )


async def test_logout_with_storage_failure(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    authenticate(client, consenting_user.username)
    refresh_token = client.cookies["refresh_token"]

    monkeypatch.setattr(cruds_auth, "delete_refresh_token_by_token", failing_crud)
    response = client.post("/logout", follow_redirects=False)

    assert response.status_code == 500
    assert response.json()["error"] == "server_error"
    async with TestingSessionLocal() as db:
        assert (
            await cruds_auth.get_refresh_token_by_token(db=db, token=refresh_token)
            is not None
        )


def test_login_with_storage_failure(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        cruds_users,
        "get_user_by_email_or_username",
        failing_crud,
    )

    response = login(client, "ada", TEST_PASSWORD)

    assert_server_error(response)
