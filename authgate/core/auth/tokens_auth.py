import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import codes_auth, cruds_auth, models_auth, schemas_auth
from authgate.core.auth.exceptions_auth import (
    StateMismatchError,
    StorageFailureError,
    UnauthorizedClientError,
)
from authgate.core.clients import cruds_clients
from authgate.core.utils import security
from authgate.core.utils.config import Settings


async def mint_access_token(
    db: AsyncSession,
    user_id: str,
    client_id: str,
    keys: security.TokenKeys,
    settings: Settings,
) -> tuple[str, schemas_auth.AccessTokenClaims]:
    """
    Sign a new access token for the user and the client and persist its record.
    The token must not be returned to the client if this function raises.
    """
    access_token, claims = security.create_access_token(
        keys=keys,
        user_id=user_id,
        client_id=client_id,
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    token_claims = schemas_auth.AccessTokenClaims(**claims)
    await cruds_auth.create_access_token(
        db=db,
        access_token=models_auth.AccessToken(
            jti=token_claims.jti,
            user_id=user_id,
            client_id=client_id,
            created_on=datetime.fromtimestamp(token_claims.iat, UTC),
            expires_at=datetime.fromtimestamp(token_claims.exp, UTC),
        ),
    )
    return access_token, token_claims


async def exchange_code(
    db: AsyncSession,
    code: str,
    state: str,
    keys: security.TokenKeys,
    settings: Settings,
) -> schemas_auth.IssuedTokens:
    """
    Redeem the authorization code and issue an access token and a refresh token for it.

    Both tokens are persisted in the current transaction before being returned.
    The caller transaction must be rolled back if an exception is raised, no record of the exchange is then kept.
    """
    authorization_code = await codes_auth.redeem_code(
        db=db,
        code=code,
        settings=settings,
    )

    if not secrets.compare_digest(
        authorization_code.state_digest,
        security.hash_token(state),
    ):
        raise StateMismatchError(
            f"Authorization code for client {authorization_code.client_id} was issued for an other state",
        )

    client = await cruds_clients.get_client_by_id(
        db=db,
        client_id=authorization_code.client_id,
    )
    if client is None:
        raise UnauthorizedClientError(
            f"Client {authorization_code.client_id} of the authorization code does not exist anymore",
        )

    try:
        access_token, claims = await mint_access_token(
            db=db,
            user_id=authorization_code.user_id,
            client_id=authorization_code.client_id,
            keys=keys,
            settings=settings,
        )

        refresh_token = models_auth.RefreshToken(
            # 32 bytes give 256 bits of entropy
            token=security.generate_token(32),
            user_id=authorization_code.user_id,
            client_id=authorization_code.client_id,
            created_on=datetime.now(UTC),
            expires_at=datetime.now(UTC)
            + timedelta(minutes=settings.REFRESH_TOKEN_EXPIRE_MINUTES),
            revoked=False,
        )
        await cruds_auth.create_refresh_token(db=db, refresh_token=refresh_token)
    except SQLAlchemyError as error:
        raise StorageFailureError(
            f"Could not persist the tokens for user {authorization_code.user_id} and client {authorization_code.client_id}: {error}",
        ) from error

    return schemas_auth.IssuedTokens(
        access_token=access_token,
        refresh_token=refresh_token.token,
        claims=claims,
        refresh_token_expires_at=refresh_token.expires_at,
        landing_page=client.landing_page or client.redirect_uri,
    )
