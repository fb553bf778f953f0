from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.clients import models_clients


async def get_client_by_id(
    db: AsyncSession,
    client_id: str,
) -> models_clients.OAuthClient | None:
    result = await db.execute(
        select(models_clients.OAuthClient).where(
            models_clients.OAuthClient.id == client_id,
        ),
    )
    return result.scalars().first()


async def get_client_by_name(
    db: AsyncSession,
    name: str,
) -> models_clients.OAuthClient | None:
    result = await db.execute(
        select(models_clients.OAuthClient).where(
            models_clients.OAuthClient.name == name,
        ),
    )
    return result.scalars().first()


async def create_client(
    db: AsyncSession,
    client: models_clients.OAuthClient,
) -> None:
    db.add(client)
    await db.flush()
