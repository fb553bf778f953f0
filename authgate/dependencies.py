"""
Various FastAPI [dependencies](https://fastapi.tiangolo.com/tutorial/dependencies/)
They are used in endpoints function signatures. For example:
```python
async def get_users(db: AsyncSession = Depends(get_db)):
```
"""

import logging
from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated, cast

import starlette.datastructures
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import schemas_auth, validation_auth
from authgate.core.auth.exceptions_auth import LoginRequiredError
from authgate.core.auth.utils_auth import (
    ACCESS_TOKEN_COOKIE_NAME,
    REFRESH_TOKEN_COOKIE_NAME,
    set_access_token_cookie,
)
from authgate.core.utils.config import Settings, construct_prod_settings
from authgate.core.utils.security import TokenKeys
from authgate.types.exceptions import InvalidAppStateTypeError
from authgate.utils.auth.authenticators import BaseAuthenticator, PasswordAuthenticator
from authgate.utils.state import (
    LifespanState,
    RuntimeLifespanState,
    init_engine,
    init_SessionLocal,
    init_token_keys,
)

SESSION_USER_ID_KEY = "user_id"

authgate_error_logger = logging.getLogger("authgate.error")


async def init_app_state(
    app: FastAPI,
    settings: Settings,
    authgate_error_logger: logging.Logger,
) -> LifespanState:
    """
    Initialize the state of the application. This dependency should be used at the start of the application lifespan.
    This method should be called as a dependency, and test may override it to provide their own state.
    ```python
    state = app.dependency_overrides.get(
        init_app_state,
        init_app_state,
    )(
        app=app,
        settings=settings,
        authgate_error_logger=authgate_error_logger,
    )
    ```
    """
    engine = init_engine(settings=settings)
    SessionLocal = init_SessionLocal(engine)
    token_keys = init_token_keys(settings=settings)

    authgate_error_logger.info("Startup: Application state initialized")

    return LifespanState(
        engine=engine,
        SessionLocal=SessionLocal,
        token_keys=token_keys,
    )


async def disconnect_state(
    state: LifespanState,
    authgate_error_logger: logging.Logger,
) -> None:
    """
    Disconnect items requiring it. This dependency should be used at the end of the application lifespan.
    """
    await state["engine"].dispose()
    authgate_error_logger.info("Application state disconnected successfully.")


def get_app_state(request: Request) -> RuntimeLifespanState:
    """
    Get the application state from the request. The state is injected by our middleware.
    """
    # `request.state` may be a TypedDict or a starlette State object
    # depending if it is accessed in an endpoint or the lifespan
    if isinstance(request.state, dict):
        return cast("RuntimeLifespanState", request.state)
    if isinstance(request.state, starlette.datastructures.State):
        return cast("RuntimeLifespanState", request.state.__dict__["_state"])
    raise InvalidAppStateTypeError


AppState = Annotated[RuntimeLifespanState, Depends(get_app_state)]


async def get_request_id(state: AppState) -> str:
    """
    The request identifier is a unique UUID which is used to associate logs saved during the same request
    """
    return state["request_id"]


@lru_cache
def get_settings() -> Settings:
    """
    Return a settings object, based on `config.yaml` and `.env` files
    """
    # `lru_cache()` decorator is here to prevent the class to be instantiated multiple times.
    # See https://fastapi.tiangolo.com/advanced/settings/#lru_cache-technical-details
    return construct_prod_settings()


async def get_db(state: AppState) -> AsyncGenerator[AsyncSession, None]:
    """
    Return a database session that will be automatically committed and closed after usage.

    If an HTTPException is raised during the request, we consider that the error was expected and managed by the endpoint. We commit the session.
    If an other exception is raised, including errors of the authorization flow, we rollback the session:
    a failed request never leaves a partial record.

    Cruds and endpoints should never call `db.commit()` or `db.rollback()` directly.
    After adding an object to the session, calling `await db.flush()` will integrate the changes in the transaction without committing them.
    """
    async with state["SessionLocal"]() as db:
        try:
            yield db
        except HTTPException:
            await db.commit()
            raise
        except Exception:
            await db.rollback()
            raise
        else:
            await db.commit()
        finally:
            await db.close()


def get_token_keys(state: AppState) -> TokenKeys:
    return state["token_keys"]


def get_authenticator(db: AsyncSession = Depends(get_db)) -> BaseAuthenticator:
    return PasswordAuthenticator(db=db)


def get_session_user_id(request: Request) -> str:
    """
    Return the id of the user logged in the session, or send the user back to the login page
    """
    user_id = request.session.get(SESSION_USER_ID_KEY)
    if not user_id:
        raise LoginRequiredError("No authenticated user in session")
    return user_id


async def get_validated_token(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    keys: TokenKeys = Depends(get_token_keys),
    request_id: str = Depends(get_request_id),
) -> schemas_auth.ValidatedToken:
    """
    Dependency guarding protected endpoints.

    The access token and refresh token are read from the cookies. When the access token is renewed,
    the new token is set as a cookie of the response.
    """
    validated_token = await validation_auth.validate_access_token(
        db=db,
        access_token=request.cookies.get(ACCESS_TOKEN_COOKIE_NAME),
        refresh_token=request.cookies.get(REFRESH_TOKEN_COOKIE_NAME),
        keys=keys,
        settings=settings,
        request_id=request_id,
    )
    if validated_token.rotated_access_token is not None:
        set_access_token_cookie(
            response=response,
            access_token=validated_token.rotated_access_token,
            settings=settings,
        )
    return validated_token
