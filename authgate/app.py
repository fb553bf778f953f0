"""File defining the Metadata. And the basic functions creating the database tables and calling the router"""

import logging
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

import alembic.command as alembic_command
import alembic.config as alembic_config
import alembic.migration as alembic_migration
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.routing import APIRoute
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from authgate import api
from authgate.core.auth.exceptions_auth import AuthFlowError, StorageFailureError
from authgate.core.auth.utils_auth import clear_auth_cookies
from authgate.core.utils.config import Settings
from authgate.core.utils.log import LogConfig
from authgate.dependencies import disconnect_state, init_app_state
from authgate.types.exceptions import ContentHTTPException
from authgate.types.sqlalchemy import Base
from authgate.utils import initialization
from authgate.utils.state import LifespanState

# NOTE: We can not get loggers at the top of this file like we do in other files
# as the loggers are not yet initialized


def get_alembic_config(connection: Connection) -> alembic_config.Config:
    """
    Return the alembic configuration object in a synchronous way
    """
    alembic_cfg = alembic_config.Config("alembic.ini")
    alembic_cfg.attributes["connection"] = connection

    return alembic_cfg


def get_alembic_current_revision(connection: Connection) -> str | None:
    """
    Return the current revision of the database in a synchronous way

    NOTE: SQLAlchemy does not support `Inspection on an AsyncConnection`. If you have an AsyncConnection, the call to this method must be wrapped in a `run_sync` call to obtain a Connection.
    See https://alembic.sqlalchemy.org/en/latest/cookbook.html#programmatic-api-use-connection-sharing-with-asyncio for more information.
    """

    context = alembic_migration.MigrationContext.configure(connection)
    return context.get_current_revision()


def stamp_alembic_head(connection: Connection) -> None:
    """
    Stamp the database with the latest revision in a synchronous way
    """
    alembic_cfg = get_alembic_config(connection)
    alembic_command.stamp(alembic_cfg, "head")


def run_alembic_upgrade(connection: Connection) -> None:
    """
    Run the alembic upgrade command to upgrade the database to the latest version (`head`) in a synchronous way
    """

    alembic_cfg = get_alembic_config(connection)

    alembic_command.upgrade(alembic_cfg, "head")


def update_db_tables(
    sync_engine: Engine,
    authgate_error_logger: logging.Logger,
    drop_db: bool = False,
) -> None:
    """
    If the database is not initialized, create the tables and stamp the database with the latest revision.
    Otherwise, run the alembic upgrade command to upgrade the database to the latest version (`head`).

    if drop_db is True, we will drop all tables before creating them again

    This method requires a synchronous engine
    """

    try:
        with sync_engine.begin() as conn:
            if drop_db:
                initialization.drop_db_sync(conn)

            alembic_current_revision = get_alembic_current_revision(conn)

            if alembic_current_revision is None:
                # We generate the database using SQLAlchemy
                # in order not to have to run all migrations one by one
                # See https://alembic.sqlalchemy.org/en/latest/cookbook.html#building-an-up-to-date-database-from-scratch
                authgate_error_logger.info(
                    "Startup: Database tables not created yet, creating them",
                )

                Base.metadata.create_all(conn)
                # We stamp the database with the latest revision so that
                # alembic knows that the database is up to date
                stamp_alembic_head(conn)
            else:
                authgate_error_logger.info(
                    f"Startup: Database tables already created (current revision: {alembic_current_revision}), running migrations",
                )
                run_alembic_upgrade(conn)

            authgate_error_logger.info("Startup: Database tables updated")
    except Exception as error:
        authgate_error_logger.fatal(
            f"Startup: Could not create tables in the database: {error}",
        )
        raise


def init_db(
    settings: Settings,
    authgate_error_logger: logging.Logger,
    drop_db: bool = False,
) -> None:
    """
    Init the database by creating the tables or running the migrations

    The method will use a synchronous engine
    """
    sync_engine = initialization.get_sync_db_engine(settings=settings)

    update_db_tables(
        sync_engine=sync_engine,
        authgate_error_logger=authgate_error_logger,
        drop_db=drop_db,
    )
    sync_engine.dispose()


def use_route_path_as_operation_ids(app: FastAPI) -> None:
    """
    Simplify operation IDs so that generated API clients have simpler function names.

    The operation_id will have the format "method_path", like "get_users_me".
    """
    for route in app.routes:
        if isinstance(route, APIRoute):
            method = "_".join(sorted(route.methods))
            route.operation_id = method.lower() + route.path.replace("/", "_").replace(
                ".",
                "_",
            )


# We wrap the application in a function to be able to pass the settings and drop_db parameters
# The drop_db parameter is used to drop the database tables before creating them again
def get_application(settings: Settings, drop_db: bool = False) -> FastAPI:
    # Initialize loggers
    LogConfig().initialize_loggers(settings=settings)

    authgate_access_logger = logging.getLogger("authgate.access")
    authgate_security_logger = logging.getLogger("authgate.security")
    authgate_error_logger = logging.getLogger("authgate.error")

    # Creating a lifespan which will be called when the application starts then shuts down
    # https://fastapi.tiangolo.com/advanced/events/
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[LifespanState, None]:
        authgate_error_logger.info("Startup: Initializing application")

        init_db(
            settings=settings,
            authgate_error_logger=authgate_error_logger,
            drop_db=drop_db,
        )

        state: LifespanState = await app.dependency_overrides.get(
            init_app_state,
            init_app_state,
        )(
            app=app,
            settings=settings,
            authgate_error_logger=authgate_error_logger,
        )

        # The returned state is copied in each request state
        # See https://www.starlette.io/lifespan/#lifespan-state
        yield state

        authgate_error_logger.info("Shutting down")
        await app.dependency_overrides.get(
            disconnect_state,
            disconnect_state,
        )(
            state=state,
            authgate_error_logger=authgate_error_logger,
        )

    app = FastAPI(
        title="AuthGate",
        lifespan=lifespan,
    )
    app.include_router(api.api_router)
    use_route_path_as_operation_ids(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # The session holds the login CSRF token and the authenticated user id
    # It is stored in a cookie signed with SESSION_SECRET_KEY
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET_KEY,
        max_age=settings.STATE_COOKIE_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=settings.COOKIE_SECURE,
    )

    @app.middleware("http")
    async def logging_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """
        This middleware is called around each request.
        It logs the request and inject a unique identifier in the request that should be used to associate logs saved during the request.
        """
        # We generate a unique identifier for the request and save it as a state.
        # https://www.starlette.io/requests/#other-state
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        if request.client is None:
            authgate_security_logger.warning(
                f"Client information not available for {request.url.path}",
            )
            raise HTTPException(status_code=400, detail="No client information")

        client_address = f"{request.client.host}:{request.client.port}"

        response = await call_next(request)

        authgate_access_logger.info(
            f'{client_address} - "{request.method} {request.url.path}" {response.status_code} ({request_id})',
        )
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ):
        # We use a Debug logger to log the error as personal data may be present in the request
        authgate_error_logger.debug(
            f"Validation error: {exc.errors()} ({request.state.request_id})",
        )

        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "invalid_request",
                "error_description": "Invalid request",
            },
        )

    @app.exception_handler(ContentHTTPException)
    async def content_exception_handler(
        request: Request,
        exc: ContentHTTPException,
    ):
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(exc.content),
            headers=exc.headers,
        )

    @app.exception_handler(AuthFlowError)
    async def auth_flow_exception_handler(
        request: Request,
        exc: AuthFlowError,
    ):
        """
        Errors of the authorization flow are logged with their internal detail,
        the client only receives a generic description.
        """
        request_id = request.state.request_id
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            authgate_error_logger.error(
                f"{exc.__class__.__name__} on {request.url.path}: {exc.detail} ({request_id})",
            )
        else:
            authgate_security_logger.warning(
                f"{exc.__class__.__name__} on {request.url.path}: {exc.detail} ({request_id})",
            )

        if exc.force_login:
            # The user has to authenticate again
            request.session.clear()
            response = RedirectResponse("/login", status_code=status.HTTP_302_FOUND)
            clear_auth_cookies(response=response, settings=settings)
            return response

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error,
                "error_description": exc.error_description,
            },
        )

    @app.exception_handler(SQLAlchemyError)
    async def storage_exception_handler(
        request: Request,
        exc: SQLAlchemyError,
    ):
        # Store failures raised outside of the authorization flow use the same generic server_error answer
        return await auth_flow_exception_handler(
            request=request,
            exc=StorageFailureError(f"{exc.__class__.__name__}: {exc}"),
        )

    return app
