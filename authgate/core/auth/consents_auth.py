"""
Consent store.

Once granted, a consent is never prompted again for the same (user, client).
There is no way to revoke a consent: a new decision can only be recorded through `upsert_consent`.
"""

from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import cruds_auth
from authgate.core.auth.exceptions_auth import StorageFailureError


async def upsert_consent(
    db: AsyncSession,
    user_id: str,
    client_id: str,
    granted: bool,
) -> None:
    try:
        await cruds_auth.upsert_consent(
            db=db,
            user_id=user_id,
            client_id=client_id,
            granted=granted,
            updated_on=datetime.now(UTC),
        )
    except SQLAlchemyError as error:
        raise StorageFailureError(
            f"Could not record the consent of user {user_id} for client {client_id}: {error}",
        ) from error


async def has_consent(
    db: AsyncSession,
    user_id: str,
    client_id: str,
) -> bool:
    consent = await cruds_auth.get_consent(
        db=db,
        user_id=user_id,
        client_id=client_id,
    )
    return consent is not None and consent.granted
