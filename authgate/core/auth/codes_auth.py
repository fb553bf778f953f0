import asyncio
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import cruds_auth, models_auth
from authgate.core.auth.exceptions_auth import (
    CodeExpiredError,
    CodeNotFoundError,
    StorageFailureError,
)
from authgate.core.utils.config import Settings
from authgate.core.utils.security import generate_token, hash_token

authgate_security_logger = logging.getLogger("authgate.security")


async def issue_code(
    db: AsyncSession,
    user_id: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    settings: Settings,
) -> models_auth.AuthorizationCode:
    """
    Mint and persist a one time authorization code bound to the user, the client, the redirect_uri and the state.
    """
    now = datetime.now(UTC)
    authorization_code = models_auth.AuthorizationCode(
        # 16 bytes give 128 bits of entropy
        code=generate_token(16),
        user_id=user_id,
        client_id=client_id,
        redirect_uri=redirect_uri,
        state_digest=hash_token(state),
        created_on=now,
        expires_at=now
        + timedelta(minutes=settings.AUTHORIZATION_CODE_EXPIRE_MINUTES),
    )
    try:
        await cruds_auth.create_authorization_code(
            db=db,
            authorization_code=authorization_code,
        )
    except SQLAlchemyError as error:
        raise StorageFailureError(
            f"Could not persist the authorization code for user {user_id} and client {client_id}: {error}",
        ) from error
    return authorization_code


async def redeem_code(
    db: AsyncSession,
    code: str,
    settings: Settings,
) -> models_auth.AuthorizationCode:
    """
    Claim and delete the authorization code in one atomic step.

    A code that was just created may not be visible yet, the lookup is thus retried
    `AUTHORIZATION_CODE_LOOKUP_ATTEMPTS` times when the code is not found.
    An expired code is never retried.

    Raise `CodeNotFoundError` or `CodeExpiredError`.
    """
    authorization_code: models_auth.AuthorizationCode | None = None
    for attempt in range(1, settings.AUTHORIZATION_CODE_LOOKUP_ATTEMPTS + 1):
        try:
            authorization_code = await cruds_auth.claim_authorization_code_by_code(
                db=db,
                code=code,
            )
        except SQLAlchemyError as error:
            raise StorageFailureError(
                f"Could not claim the authorization code: {error}",
            ) from error
        if authorization_code is not None:
            break
        if attempt < settings.AUTHORIZATION_CODE_LOOKUP_ATTEMPTS:
            await asyncio.sleep(settings.AUTHORIZATION_CODE_LOOKUP_DELAY_MS / 1000)

    if authorization_code is None:
        raise CodeNotFoundError(
            f"Authorization code not found after {settings.AUTHORIZATION_CODE_LOOKUP_ATTEMPTS} attempts",
        )

    if authorization_code.expires_at < datetime.now(UTC):
        raise CodeExpiredError(
            f"Authorization code for user {authorization_code.user_id} and client {authorization_code.client_id} expired on {authorization_code.expires_at}",
        )

    return authorization_code
