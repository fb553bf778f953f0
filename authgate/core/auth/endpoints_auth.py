import logging
from typing import Any

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import (
    codes_auth,
    consents_auth,
    csrf_auth,
    revocation_auth,
    schemas_auth,
    tokens_auth,
    validation_auth,
)
from authgate.core.auth.exceptions_auth import (
    StateMismatchError,
    TokenInvalidSignatureError,
    UnauthorizedClientError,
)
from authgate.core.auth.utils_auth import (
    ACCESS_TOKEN_COOKIE_NAME,
    REFRESH_TOKEN_COOKIE_NAME,
    STATE_COOKIE_NAME,
    clear_auth_cookies,
    get_authorizable_client,
    set_access_token_cookie,
    set_refresh_token_cookie,
)
from authgate.core.clients import models_clients
from authgate.core.clients.utils_clients import get_default_client
from authgate.core.utils.config import Settings
from authgate.core.utils.security import TokenKeys
from authgate.dependencies import (
    SESSION_USER_ID_KEY,
    get_authenticator,
    get_db,
    get_request_id,
    get_session_user_id,
    get_settings,
    get_token_keys,
)
from authgate.types.exceptions import ContentHTTPException
from authgate.types.module import CoreModule
from authgate.utils.auth.authenticators import (
    AuthenticationError,
    BaseAuthenticator,
    PasswordCredential,
)
from authgate.utils.tools import build_redirect_url, templates

router = APIRouter(tags=["Auth"])

core_module = CoreModule(
    root="auth",
    tag="Auth",
    router=router,
)

authgate_access_logger = logging.getLogger("authgate.access")
authgate_security_logger = logging.getLogger("authgate.security")


@router.get(
    "/login",
    response_class=HTMLResponse,
)
async def get_login(request: Request):
    """
    Render the login form. A new CSRF token is bound to the session for each rendering.
    """
    csrf_token = csrf_auth.issue_csrf_token(request.session)
    return templates.TemplateResponse(
        request,
        "login.html",
        {"csrf_token": csrf_token},
    )


@router.post(
    "/login",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
async def login(
    request: Request,
    csrf_token: str = Form(""),
    username: str = Form(...),
    password: str = Form(...),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    authenticator: BaseAuthenticator = Depends(get_authenticator),
    request_id: str = Depends(get_request_id),
):
    """
    Check the credentials of the user, then start the authorization of the user default client.

    `username` may be the email or the username of the user.
    """
    if not csrf_auth.verify_csrf_token(request.session, csrf_token):
        raise StateMismatchError("Invalid or missing login CSRF token")

    try:
        identity = await authenticator.verify(
            PasswordCredential(identifier=username, password=password),
        )
    except AuthenticationError:
        authgate_security_logger.warning(
            f"Login: Invalid credentials for {username} ({request_id})",
        )
        return RedirectResponse("/login", status_code=status.HTTP_302_FOUND)

    # A new session is started for the authenticated user
    request.session.clear()
    request.session[SESSION_USER_ID_KEY] = identity.user_id

    client = await get_default_client(db=db, user_id=identity.user_id)
    if client is None:
        raise UnauthorizedClientError(
            f"User {identity.user_id} does not have a default client",
        )

    authgate_security_logger.info(
        f"Login: User {identity.user_id} logged in ({request_id})",
    )

    response = RedirectResponse("/authorize", status_code=status.HTTP_302_FOUND)
    state = csrf_auth.issue_state(response=response, settings=settings)
    response.headers["location"] = build_redirect_url(
        "/authorize",
        {
            "client_id": client.id,
            "redirect_uri": client.redirect_uri,
            "state": state,
        },
    )
    return response


async def issue_code_and_redirect(
    db: AsyncSession,
    user_id: str,
    client: models_clients.OAuthClient,
    state: str,
    settings: Settings,
    request_id: str,
) -> RedirectResponse:
    authorization_code = await codes_auth.issue_code(
        db=db,
        user_id=user_id,
        client_id=client.id,
        redirect_uri=client.redirect_uri,
        state=state,
        settings=settings,
    )
    authgate_security_logger.info(
        f"Authorize: Issued an authorization code for user {user_id} and client {client.id} ({request_id})",
    )
    return RedirectResponse(
        build_redirect_url(
            client.redirect_uri,
            {"code": authorization_code.code, "state": state},
        ),
        status_code=status.HTTP_302_FOUND,
    )


@router.get(
    "/authorize",
    response_class=HTMLResponse,
)
async def authorize(
    request: Request,
    client_id: str,
    redirect_uri: str,
    state: str,
    user_id: str = Depends(get_session_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    request_id: str = Depends(get_request_id),
):
    """
    Start the authorization of a client.

    If the user already approved the client, an authorization code is issued right away and the user is redirected to the client.
    Otherwise the consent prompt is rendered.
    """
    client = await get_authorizable_client(
        db=db,
        client_id=client_id,
        redirect_uri=redirect_uri,
        user_id=user_id,
    )

    if await consents_auth.has_consent(db=db, user_id=user_id, client_id=client.id):
        return await issue_code_and_redirect(
            db=db,
            user_id=user_id,
            client=client,
            state=state,
            settings=settings,
            request_id=request_id,
        )

    return templates.TemplateResponse(
        request,
        "authorize.html",
        {
            "client_name": client.name,
            "client_id": client.id,
            "redirect_uri": client.redirect_uri,
            "state": state,
        },
    )


@router.post(
    "/authorize",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
async def authorize_decision(
    request: Request,
    decision: schemas_auth.AuthorizeDecision = Depends(
        schemas_auth.AuthorizeDecision.as_form,
    ),
    user_id: str = Depends(get_session_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    request_id: str = Depends(get_request_id),
):
    """
    Record the decision of the user on the consent prompt.

    `decision=approve` stores the consent, issues an authorization code and redirects the user to the client.
    Any other decision renders a denial page.
    """
    if not csrf_auth.verify_state(request.cookies.get(STATE_COOKIE_NAME), decision.state):
        raise StateMismatchError(
            f"Consent decision of user {user_id} does not match the state cookie",
        )

    client = await get_authorizable_client(
        db=db,
        client_id=decision.client_id,
        redirect_uri=decision.redirect_uri,
        user_id=user_id,
    )

    if decision.decision != "approve":
        authgate_security_logger.info(
            f"Authorize: User {user_id} denied client {client.id} ({request_id})",
        )
        return templates.TemplateResponse(
            request,
            "denied.html",
            {"client_name": client.name},
            status_code=status.HTTP_403_FORBIDDEN,
        )

    await consents_auth.upsert_consent(
        db=db,
        user_id=user_id,
        client_id=client.id,
        granted=True,
    )
    authgate_security_logger.info(
        f"Authorize: User {user_id} approved client {client.id} ({request_id})",
    )

    return await issue_code_and_redirect(
        db=db,
        user_id=user_id,
        client=client,
        state=decision.state,
        settings=settings,
        request_id=request_id,
    )


@router.get(
    "/callback",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
async def callback(
    request: Request,
    code: str,
    state: str,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    keys: TokenKeys = Depends(get_token_keys),
    request_id: str = Depends(get_request_id),
):
    """
    Exchange the authorization code for an access token and a refresh token, stored as cookies.

    The `state` query parameter must match the `state` cookie set at login.
    """
    if not csrf_auth.verify_state(request.cookies.get(STATE_COOKIE_NAME), state):
        raise StateMismatchError("Callback state does not match the state cookie")

    issued_tokens = await tokens_auth.exchange_code(
        db=db,
        code=code,
        state=state,
        keys=keys,
        settings=settings,
    )
    authgate_security_logger.info(
        f"Callback: Issued tokens for user {issued_tokens.claims.sub} and client {issued_tokens.claims.cid} ({request_id})",
    )

    response = RedirectResponse(
        issued_tokens.landing_page,
        status_code=status.HTTP_302_FOUND,
    )
    set_access_token_cookie(
        response=response,
        access_token=issued_tokens.access_token,
        settings=settings,
    )
    set_refresh_token_cookie(
        response=response,
        refresh_token=issued_tokens.refresh_token,
        expires_at=issued_tokens.refresh_token_expires_at,
        settings=settings,
    )
    return response


@router.post(
    "/validate",
    response_model=schemas_auth.IntrospectTokenResponse,
    status_code=200,
)
async def validate(
    access_token: str = Form(...),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    keys: TokenKeys = Depends(get_token_keys),
    request_id: str = Depends(get_request_id),
):
    """
    Introspect a bearer access token. Expired tokens are invalid, they are never renewed by this endpoint.
    """
    try:
        claims = await validation_auth.introspect_access_token(
            db=db,
            access_token=access_token,
            keys=keys,
            settings=settings,
        )
    except TokenInvalidSignatureError as error:
        authgate_access_logger.info(
            f"Validate: Inactive token, {error.detail} ({request_id})",
        )
        raise ContentHTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"active": False},
        ) from None

    return schemas_auth.IntrospectTokenResponse(
        active=True,
        sub=claims.sub,
        client_id=claims.cid,
        exp=claims.exp,
    )


@router.post(
    "/logout",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
async def logout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    keys: TokenKeys = Depends(get_token_keys),
    request_id: str = Depends(get_request_id),
):
    """
    Revoke the tokens of the caller, clear the cookies and end the session.
    Calling this endpoint without credentials, or several times, is not an error.
    """
    await revocation_auth.revoke_credentials(
        db=db,
        access_token=request.cookies.get(ACCESS_TOKEN_COOKIE_NAME),
        refresh_token=request.cookies.get(REFRESH_TOKEN_COOKIE_NAME),
        keys=keys,
    )
    authgate_security_logger.info(
        f"Logout: Revoked credentials of user {request.session.get(SESSION_USER_ID_KEY)} ({request_id})",
    )
    request.session.clear()

    response = RedirectResponse("/login", status_code=status.HTTP_302_FOUND)
    clear_auth_cookies(response=response, settings=settings)
    return response


@router.get(
    "/.well-known/jwks.json",
)
def jwks_uri(
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Public keys allowing to verify the signature of access tokens
    """
    return settings.RSA_PUBLIC_JWK
