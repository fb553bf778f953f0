import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from functools import lru_cache

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from sqlalchemy import NullPool
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from authgate.core.auth import models_auth
from authgate.core.clients import models_clients
from authgate.core.users import cruds_users, models_users
from authgate.core.utils import security
from authgate.core.utils.config import Settings
from authgate.types.sqlalchemy import Base
from authgate.utils.state import LifespanState, init_token_keys
from authgate.utils.tools import get_random_string


class FailedToAddObjectToDB(Exception):
    """Exception raised when an object cannot be added to the database."""


def generate_rsa_private_pem() -> bytes:
    """
    Generate a new RSA private key, serialized as PEM, to sign the tokens issued during tests
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


TEST_RSA_PRIVATE_PEM = generate_rsa_private_pem()


@lru_cache
def override_get_settings() -> Settings:
    """Override the get_settings function to use the testing settings"""

    return Settings(
        _env_file="./tests/.env.test",
        _yaml_file="./tests/config.test.yaml",
        RSA_PRIVATE_PEM_STRING=TEST_RSA_PRIVATE_PEM,
    )


settings = override_get_settings()

TEST_TOKEN_KEYS = init_token_keys(settings)

# Connect to the test's database
if settings.SQLITE_DB:
    SQLALCHEMY_DATABASE_URL = f"sqlite+aiosqlite:///./{settings.SQLITE_DB}"
    SQLALCHEMY_DATABASE_URL_SYNC = f"sqlite:///./{settings.SQLITE_DB}"
else:
    SQLALCHEMY_DATABASE_URL = f"postgresql+asyncpg://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}@{settings.POSTGRES_HOST}/{settings.POSTGRES_DB}"
    SQLALCHEMY_DATABASE_URL_SYNC = f"postgresql+psycopg://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}@{settings.POSTGRES_HOST}/{settings.POSTGRES_DB}"


engine = create_async_engine(
    SQLALCHEMY_DATABASE_URL,
    echo=settings.DATABASE_DEBUG,
    # We need to use NullPool as the tests and the TestClient run in different event loops
    # See https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html#using-multiple-asyncio-event-loops
    poolclass=NullPool,
)

# Create a session for testing purposes
TestingSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def init_test_engine() -> AsyncEngine:
    return engine


def init_test_SessionLocal() -> Callable[[], AsyncSession]:
    return TestingSessionLocal


async def override_init_app_state(
    app: FastAPI,
    settings: Settings,
    authgate_error_logger: logging.Logger,
) -> LifespanState:
    """
    Initialize the state of the application with the testing engine and session maker
    """
    return LifespanState(
        engine=init_test_engine(),
        SessionLocal=init_test_SessionLocal(),
        token_keys=init_token_keys(settings=settings),
    )


authgate_error_logger = logging.getLogger("authgate.error")

TEST_PASSWORD = "a_strong_test_password"
TEST_PASSWORD_HASH = security.get_password_hash(TEST_PASSWORD)


async def add_object_to_db(db_object: Base) -> None:
    """
    Add an object to the database
    """
    async with TestingSessionLocal() as db:
        try:
            db.add(db_object)
            await db.commit()
        except Exception as error:
            await db.rollback()
            raise FailedToAddObjectToDB from error
        finally:
            await db.close()


async def create_user(
    user_id: str | None = None,
    username: str | None = None,
    email: str | None = None,
    first_name: str | None = None,
) -> models_users.CoreUser:
    """
    Add a dummy user to the database, with the password `TEST_PASSWORD`
    User property will be randomly generated if not provided
    """
    user = models_users.CoreUser(
        id=user_id or str(uuid.uuid4()),
        username=username or get_random_string(),
        email=email or (get_random_string() + "@authgate.test"),
        password_hash=TEST_PASSWORD_HASH,
        first_name=first_name or get_random_string(),
        last_name=get_random_string(),
        birthday=None,
        created_on=datetime.now(UTC),
    )

    async with TestingSessionLocal() as db:
        try:
            await cruds_users.create_user(db=db, user=user)
            await db.commit()
        except Exception as error:
            await db.rollback()
            raise FailedToAddObjectToDB from error
        finally:
            await db.close()

    return user


async def create_client(
    owner: models_users.CoreUser,
    redirect_uri: str = "/callback",
    landing_page: str | None = "/dashboard",
    name: str | None = None,
) -> models_clients.OAuthClient:
    client = models_clients.OAuthClient(
        id=str(uuid.uuid4()),
        secret=get_random_string(32),
        name=name or get_random_string(),
        redirect_uri=redirect_uri,
        owner_id=owner.id,
        landing_page=landing_page,
    )
    await add_object_to_db(client)
    return client


async def create_access_token_with_record(
    user_id: str,
    client_id: str,
    expires_delta: timedelta | None = None,
    keys: security.TokenKeys = TEST_TOKEN_KEYS,
) -> tuple[str, str]:
    """
    Sign an access token and persist its record. Return the token and its jti.

    A negative `expires_delta` allows to create an already expired token.
    """
    expires_delta = expires_delta or timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
    )
    access_token, claims = security.create_access_token(
        keys=keys,
        user_id=user_id,
        client_id=client_id,
        expires_delta=expires_delta,
    )
    await add_object_to_db(
        models_auth.AccessToken(
            jti=claims["jti"],
            user_id=user_id,
            client_id=client_id,
            created_on=datetime.now(UTC),
            expires_at=datetime.now(UTC) + expires_delta,
        ),
    )
    return access_token, claims["jti"]


async def create_refresh_token(
    user_id: str,
    client_id: str,
    expires_delta: timedelta = timedelta(days=30),
    revoked: bool = False,
) -> str:
    token = security.generate_token(32)
    await add_object_to_db(
        models_auth.RefreshToken(
            token=token,
            user_id=user_id,
            client_id=client_id,
            created_on=datetime.now(UTC),
            expires_at=datetime.now(UTC) + expires_delta,
            revoked=revoked,
        ),
    )
    return token
