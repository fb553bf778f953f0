import jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import cruds_auth
from authgate.core.auth.exceptions_auth import StorageFailureError
from authgate.core.utils import security


async def revoke_credentials(
    db: AsyncSession,
    access_token: str | None,
    refresh_token: str | None,
    keys: security.TokenKeys,
) -> None:
    """
    Delete the records of the access token and the refresh token of the caller.

    Missing, expired or unknown credentials are ignored, calling this function several times has no additional effect.
    An access token with an invalid signature is not trusted to identify a record and is ignored.
    """
    payload = None
    if access_token:
        try:
            payload = security.decode_access_token(
                keys=keys,
                token=access_token,
                verify_exp=False,
            )
        except jwt.InvalidTokenError:
            payload = None
    try:
        if payload is not None:
            await cruds_auth.delete_access_token_by_jti(db=db, jti=payload["jti"])
        if refresh_token:
            await cruds_auth.delete_refresh_token_by_token(db=db, token=refresh_token)
    except SQLAlchemyError as error:
        raise StorageFailureError(f"Could not revoke the credentials: {error}") from error
