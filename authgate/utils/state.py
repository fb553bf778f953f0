from typing import TypedDict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from authgate.core.utils.config import Settings
from authgate.core.utils.security import TokenKeys
from authgate.types.sqlalchemy import SessionLocalType


class LifespanState(TypedDict):
    """
    The LifespanState is returned by the application lifespan and copied in each request state
    """

    # Database engine
    engine: AsyncEngine
    # Database session creator
    SessionLocal: SessionLocalType
    # Immutable key material used to sign and verify access tokens
    token_keys: TokenKeys


class RuntimeLifespanState(LifespanState):
    """
    Requests contains an extended version of the LifespanState for each request.
    """

    request_id: str


def init_engine(settings: Settings) -> AsyncEngine:
    """
    Return the (asynchronous) database engine
    """

    if settings.SQLITE_DB:
        SQLALCHEMY_DATABASE_URL = f"sqlite+aiosqlite:///./{settings.SQLITE_DB}"
    else:
        SQLALCHEMY_DATABASE_URL = f"postgresql+asyncpg://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}@{settings.POSTGRES_HOST}/{settings.POSTGRES_DB}"

    return create_async_engine(
        SQLALCHEMY_DATABASE_URL,
        echo=settings.DATABASE_DEBUG,
    )


def init_SessionLocal(engine: AsyncEngine) -> SessionLocalType:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def init_token_keys(settings: Settings) -> TokenKeys:
    return TokenKeys.from_settings(settings)
