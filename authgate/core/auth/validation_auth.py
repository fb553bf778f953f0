"""
Validation of the credentials of a request.

The access token goes through ordered stages, each stage either returns its result or raises an `AuthFlowError`:
1. decode: the signature must be valid. An expired token is accepted by this stage but flagged as expired
2. record: when `CHECK_ACCESS_TOKEN_RECORD` is set, the persisted record of a valid token must still exist
3. refresh: an expired token requires a refresh token, valid, unrevoked and bound to the same user and client
4. rotate: a new access token replaces the expired one, the record of the expired token is deleted

Rotation is the only mutation done while validating a request.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

import jwt
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import cruds_auth, models_auth, schemas_auth, tokens_auth
from authgate.core.auth.exceptions_auth import (
    InvalidRequestError,
    RefreshInvalidOrExpiredError,
    StorageFailureError,
    TokenExpiredNoRefreshError,
    TokenInvalidSignatureError,
)
from authgate.core.utils import security
from authgate.core.utils.config import Settings

authgate_access_logger = logging.getLogger("authgate.access")
authgate_security_logger = logging.getLogger("authgate.security")


@dataclass(frozen=True)
class DecodedAccessToken:
    claims: schemas_auth.AccessTokenClaims
    expired: bool


def decode_stage(
    access_token: str | None,
    keys: security.TokenKeys,
) -> DecodedAccessToken:
    if not access_token:
        raise InvalidRequestError("Missing access token")

    try:
        try:
            payload = security.decode_access_token(keys=keys, token=access_token)
            expired = False
        except jwt.ExpiredSignatureError:
            # The signature is checked again, only the expiration is ignored
            payload = security.decode_access_token(
                keys=keys,
                token=access_token,
                verify_exp=False,
            )
            expired = True
        claims = schemas_auth.AccessTokenClaims(**payload)
    except (jwt.InvalidTokenError, ValidationError) as error:
        raise TokenInvalidSignatureError(
            f"Could not verify access token: {error}",
        ) from error

    return DecodedAccessToken(claims=claims, expired=expired)


async def record_stage(
    db: AsyncSession,
    claims: schemas_auth.AccessTokenClaims,
    settings: Settings,
) -> None:
    if not settings.CHECK_ACCESS_TOKEN_RECORD:
        return
    record = await cruds_auth.get_access_token_by_jti(db=db, jti=claims.jti)
    if record is None:
        raise TokenInvalidSignatureError(
            f"Access token {claims.jti} of user {claims.sub} was revoked",
        )


async def refresh_stage(
    db: AsyncSession,
    claims: schemas_auth.AccessTokenClaims,
    refresh_token: str | None,
) -> models_auth.RefreshToken:
    if not refresh_token:
        raise TokenExpiredNoRefreshError(
            f"Access token of user {claims.sub} expired and no refresh token was provided",
        )

    record = await cruds_auth.get_refresh_token_by_token(db=db, token=refresh_token)
    if record is None:
        raise TokenExpiredNoRefreshError(
            f"Access token of user {claims.sub} expired and the refresh token is unknown",
        )

    if record.revoked:
        raise RefreshInvalidOrExpiredError(
            f"Refresh token of user {record.user_id} was revoked",
        )
    if record.expires_at < datetime.now(UTC):
        raise RefreshInvalidOrExpiredError(
            f"Refresh token of user {record.user_id} expired on {record.expires_at}",
        )
    if record.user_id != claims.sub or record.client_id != claims.cid:
        raise RefreshInvalidOrExpiredError(
            f"Refresh token of user {record.user_id} and client {record.client_id} used for an access token of user {claims.sub} and client {claims.cid}",
        )

    return record


async def rotate_stage(
    db: AsyncSession,
    claims: schemas_auth.AccessTokenClaims,
    keys: security.TokenKeys,
    settings: Settings,
) -> tuple[str, schemas_auth.AccessTokenClaims]:
    try:
        new_access_token, new_claims = await tokens_auth.mint_access_token(
            db=db,
            user_id=claims.sub,
            client_id=claims.cid,
            keys=keys,
            settings=settings,
        )
        await cruds_auth.delete_access_token_by_jti(db=db, jti=claims.jti)
    except SQLAlchemyError as error:
        raise StorageFailureError(
            f"Could not rotate access token {claims.jti} of user {claims.sub}: {error}",
        ) from error
    return new_access_token, new_claims


async def validate_access_token(
    db: AsyncSession,
    access_token: str | None,
    refresh_token: str | None,
    keys: security.TokenKeys,
    settings: Settings,
    request_id: str,
) -> schemas_auth.ValidatedToken:
    """
    Check the credentials of a request, renewing the access token when it is expired and the refresh token allows it.
    """
    decoded = decode_stage(access_token=access_token, keys=keys)

    if not decoded.expired:
        await record_stage(db=db, claims=decoded.claims, settings=settings)
        authgate_access_logger.info(
            f"Validate_access_token: Valid token for user {decoded.claims.sub} ({request_id})",
        )
        return schemas_auth.ValidatedToken(claims=decoded.claims)

    await refresh_stage(
        db=db,
        claims=decoded.claims,
        refresh_token=refresh_token,
    )
    new_access_token, new_claims = await rotate_stage(
        db=db,
        claims=decoded.claims,
        keys=keys,
        settings=settings,
    )
    authgate_security_logger.info(
        f"Validate_access_token: Rotated access token {decoded.claims.jti} into {new_claims.jti} for user {new_claims.sub} ({request_id})",
    )
    return schemas_auth.ValidatedToken(
        claims=new_claims,
        rotated_access_token=new_access_token,
    )


async def introspect_access_token(
    db: AsyncSession,
    access_token: str | None,
    keys: security.TokenKeys,
    settings: Settings,
) -> schemas_auth.AccessTokenClaims:
    """
    Check an access token without trying to renew it. An expired token is invalid.
    """
    decoded = decode_stage(access_token=access_token, keys=keys)
    if decoded.expired:
        raise TokenInvalidSignatureError(
            f"Access token {decoded.claims.jti} of user {decoded.claims.sub} expired",
        )
    await record_stage(db=db, claims=decoded.claims, settings=settings)
    return decoded.claims
