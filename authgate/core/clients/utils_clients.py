import secrets
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.clients import cruds_clients, models_clients
from authgate.core.utils.config import Settings


def get_default_client_name(user_id: str) -> str:
    """
    Each user owns a default client, used to log in to AuthGate itself
    """
    return f"d{user_id}"


async def create_default_client(
    db: AsyncSession,
    user_id: str,
    settings: Settings,
) -> models_clients.OAuthClient:
    client = models_clients.OAuthClient(
        id=str(uuid.uuid4()),
        secret=secrets.token_hex(32),
        name=get_default_client_name(user_id),
        redirect_uri=settings.DEFAULT_CLIENT_REDIRECT_URI,
        owner_id=user_id,
        landing_page=settings.DEFAULT_CLIENT_LANDING_PAGE,
    )
    await cruds_clients.create_client(db=db, client=client)
    return client


async def get_default_client(
    db: AsyncSession,
    user_id: str,
) -> models_clients.OAuthClient | None:
    return await cruds_clients.get_client_by_name(
        db=db,
        name=get_default_client_name(user_id),
    )
