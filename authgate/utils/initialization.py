from sqlalchemy import Connection, MetaData
from sqlalchemy.engine import Engine, create_engine

from authgate.core.utils.config import Settings
from authgate.types.sqlalchemy import Base

# These utils are used at startup to run database initializations & migrations


def get_sync_db_engine(settings: Settings) -> Engine:
    """
    Create a synchronous database engine
    """
    if settings.SQLITE_DB:
        SQLALCHEMY_DATABASE_URL = f"sqlite:///./{settings.SQLITE_DB}"
    else:
        SQLALCHEMY_DATABASE_URL = f"postgresql+psycopg://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}@{settings.POSTGRES_HOST}/{settings.POSTGRES_DB}"

    return create_engine(SQLALCHEMY_DATABASE_URL, echo=settings.DATABASE_DEBUG)


def drop_db_sync(conn: Connection):
    """
    Drop all tables in the database
    """
    # All tables should be dropped, including the alembic_version table
    # or alembic will consider the database as up to date when running tests a second time.

    # `Base.metadata.drop_all(conn)` is only able to drop tables that are defined in models
    # We thus construct a metadata object that reflects the database instead of only using models
    my_metadata: MetaData = MetaData(schema=Base.metadata.schema)
    my_metadata.reflect(bind=conn, resolve_fks=False)
    my_metadata.drop_all(bind=conn)
