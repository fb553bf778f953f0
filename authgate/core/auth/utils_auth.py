from datetime import datetime

from fastapi import Response
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth.exceptions_auth import UnauthorizedClientError
from authgate.core.clients import cruds_clients, models_clients
from authgate.core.utils.config import Settings

STATE_COOKIE_NAME = "state"
ACCESS_TOKEN_COOKIE_NAME = "access_token"
REFRESH_TOKEN_COOKIE_NAME = "refresh_token"


def set_access_token_cookie(
    response: Response,
    access_token: str,
    settings: Settings,
) -> None:
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE_NAME,
        value=access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )


def set_refresh_token_cookie(
    response: Response,
    refresh_token: str,
    expires_at: datetime,
    settings: Settings,
) -> None:
    response.set_cookie(
        key=REFRESH_TOKEN_COOKIE_NAME,
        value=refresh_token,
        expires=expires_at,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )


def clear_auth_cookies(response: Response, settings: Settings) -> None:
    """
    Remove every cookie holding a credential or an anti-forgery value
    """
    for cookie_name in (
        STATE_COOKIE_NAME,
        ACCESS_TOKEN_COOKIE_NAME,
        REFRESH_TOKEN_COOKIE_NAME,
    ):
        response.delete_cookie(
            key=cookie_name,
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite="lax",
        )


async def get_authorizable_client(
    db: AsyncSession,
    client_id: str,
    redirect_uri: str,
    user_id: str,
) -> models_clients.OAuthClient:
    """
    Return the client if the user is allowed to authorize it with this redirect_uri.

    A client can only be authorized by its owner, and only toward its registered redirect_uri.
    """
    client = await cruds_clients.get_client_by_id(db=db, client_id=client_id)
    if client is None:
        raise UnauthorizedClientError(f"Unknown client {client_id}")
    if client.owner_id != user_id:
        raise UnauthorizedClientError(
            f"Client {client_id} is owned by {client.owner_id} and not by {user_id}",
        )
    if client.redirect_uri != redirect_uri:
        raise UnauthorizedClientError(
            f"Mismatching redirect_uri for client {client_id}, received {redirect_uri} but expected {client.redirect_uri}",
        )
    return client
