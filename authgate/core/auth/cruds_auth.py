"""File defining the functions called by the endpoints, making queries to the table using the models"""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import models_auth


async def get_consent(
    db: AsyncSession,
    user_id: str,
    client_id: str,
) -> models_auth.Consent | None:
    result = await db.execute(
        select(models_auth.Consent).where(
            models_auth.Consent.user_id == user_id,
            models_auth.Consent.client_id == client_id,
        ),
    )
    return result.scalars().first()


async def upsert_consent(
    db: AsyncSession,
    user_id: str,
    client_id: str,
    granted: bool,
    updated_on: datetime,
) -> None:
    """
    Insert or replace the consent of the user for the client in a single statement.
    Concurrent calls can not create two records for the same (user, client), the last write wins.
    """
    # SQLite and PostgreSQL both support `INSERT ... ON CONFLICT DO UPDATE` but through their own dialect construct
    dialect_insert = (
        sqlite.insert
        if db.get_bind().dialect.name == "sqlite"
        else postgresql.insert
    )
    statement = dialect_insert(models_auth.Consent).values(
        user_id=user_id,
        client_id=client_id,
        granted=granted,
        updated_on=updated_on,
    )
    statement = statement.on_conflict_do_update(
        index_elements=["user_id", "client_id"],
        set_={
            "granted": statement.excluded.granted,
            "updated_on": statement.excluded.updated_on,
        },
    )
    await db.execute(statement)
    await db.flush()


async def create_authorization_code(
    db: AsyncSession,
    authorization_code: models_auth.AuthorizationCode,
) -> None:
    db.add(authorization_code)
    await db.flush()


async def get_authorization_code_by_code(
    db: AsyncSession,
    code: str,
) -> models_auth.AuthorizationCode | None:
    result = await db.execute(
        select(models_auth.AuthorizationCode).where(
            models_auth.AuthorizationCode.code == code,
        ),
    )
    return result.scalars().first()


async def claim_authorization_code_by_code(
    db: AsyncSession,
    code: str,
) -> models_auth.AuthorizationCode | None:
    """
    Delete the authorization code and return it, in a single `DELETE ... RETURNING` statement.

    Only one of several concurrent calls for the same code can get the deleted row back.
    Return None if the code does not exist.
    """
    table = models_auth.AuthorizationCode.__table__
    result = await db.execute(
        delete(table).where(table.c.code == code).returning(*table.c),
    )
    row = result.first()
    await db.flush()
    if row is None:
        return None
    return models_auth.AuthorizationCode(**row._mapping)


async def create_access_token(
    db: AsyncSession,
    access_token: models_auth.AccessToken,
) -> None:
    db.add(access_token)
    await db.flush()


async def get_access_token_by_jti(
    db: AsyncSession,
    jti: str,
) -> models_auth.AccessToken | None:
    result = await db.execute(
        select(models_auth.AccessToken).where(models_auth.AccessToken.jti == jti),
    )
    return result.scalars().first()


async def delete_access_token_by_jti(
    db: AsyncSession,
    jti: str,
) -> None:
    await db.execute(
        delete(models_auth.AccessToken).where(models_auth.AccessToken.jti == jti),
    )
    await db.flush()


async def create_refresh_token(
    db: AsyncSession,
    refresh_token: models_auth.RefreshToken,
) -> None:
    db.add(refresh_token)
    await db.flush()


async def get_refresh_token_by_token(
    db: AsyncSession,
    token: str,
) -> models_auth.RefreshToken | None:
    result = await db.execute(
        select(models_auth.RefreshToken).where(
            models_auth.RefreshToken.token == token,
        ),
    )
    return result.scalars().first()


async def delete_refresh_token_by_token(
    db: AsyncSession,
    token: str,
) -> None:
    await db.execute(
        delete(models_auth.RefreshToken).where(
            models_auth.RefreshToken.token == token,
        ),
    )
    await db.flush()
