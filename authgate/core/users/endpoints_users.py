import logging
import uuid
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.auth import csrf_auth, schemas_auth
from authgate.core.auth.exceptions_auth import InvalidRequestError, StateMismatchError
from authgate.core.clients.utils_clients import create_default_client
from authgate.core.users import cruds_users, models_users, schemas_users
from authgate.core.utils import security
from authgate.core.utils.config import Settings
from authgate.dependencies import (
    get_db,
    get_request_id,
    get_settings,
    get_validated_token,
)
from authgate.types.module import CoreModule
from authgate.utils.tools import templates

router = APIRouter(tags=["Users"])

core_module = CoreModule(
    root="users",
    tag="Users",
    router=router,
)

authgate_security_logger = logging.getLogger("authgate.security")


@router.get(
    "/register",
    response_class=HTMLResponse,
)
async def get_register(request: Request):
    csrf_token = csrf_auth.issue_csrf_token(request.session)
    return templates.TemplateResponse(
        request,
        "register.html",
        {"csrf_token": csrf_token},
    )


@router.post(
    "/register",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
async def register(
    request: Request,
    csrf_token: str = Form(""),
    username: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    first_name: str = Form(...),
    last_name: str = Form(...),
    birthday: str = Form(""),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    request_id: str = Depends(get_request_id),
):
    """
    Create an account and its default client, then redirect to the login page.
    """
    if not csrf_auth.verify_csrf_token(request.session, csrf_token):
        raise StateMismatchError("Invalid or missing registration CSRF token")

    try:
        user_create = schemas_users.CoreUserCreateRequest(
            username=username,
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            birthday=birthday or None,
        )
    except ValidationError as error:
        raise InvalidRequestError(f"Invalid registration form: {error}") from error

    if await cruds_users.get_user_by_email(db=db, email=user_create.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An account with this email already exists",
        )
    if await cruds_users.get_user_by_username(db=db, username=user_create.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An account with this username already exists",
        )

    user = models_users.CoreUser(
        id=str(uuid.uuid4()),
        username=user_create.username,
        email=user_create.email,
        password_hash=security.get_password_hash(user_create.password),
        first_name=user_create.first_name,
        last_name=user_create.last_name,
        birthday=user_create.birthday,
        created_on=datetime.now(UTC),
    )
    await cruds_users.create_user(db=db, user=user)
    client = await create_default_client(db=db, user_id=user.id, settings=settings)

    authgate_security_logger.info(
        f"Register: Created user {user.id} and its default client {client.id} ({request_id})",
    )

    return RedirectResponse("/login", status_code=status.HTTP_302_FOUND)


async def get_current_user(
    validated_token: schemas_auth.ValidatedToken,
    db: AsyncSession,
) -> models_users.CoreUser:
    user = await cruds_users.get_user_by_id(db=db, user_id=validated_token.claims.sub)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get(
    "/dashboard",
    response_model=schemas_users.Greeting,
    status_code=200,
)
async def dashboard(
    validated_token: schemas_auth.ValidatedToken = Depends(get_validated_token),
    db: AsyncSession = Depends(get_db),
):
    user = await get_current_user(validated_token=validated_token, db=db)
    return schemas_users.Greeting(
        message=f"Welcome to your dashboard, {user.full_name}",
        user_id=user.id,
        client_id=validated_token.claims.cid,
    )


@router.get(
    "/feed",
    response_model=schemas_users.Greeting,
    status_code=200,
)
async def feed(
    validated_token: schemas_auth.ValidatedToken = Depends(get_validated_token),
    db: AsyncSession = Depends(get_db),
):
    user = await get_current_user(validated_token=validated_token, db=db)
    return schemas_users.Greeting(
        message=f"Here is your feed, {user.first_name}",
        user_id=user.id,
        client_id=validated_token.claims.cid,
    )


@router.get(
    "/users/me",
    response_model=schemas_users.CoreUser,
    status_code=200,
)
async def read_current_user(
    validated_token: schemas_auth.ValidatedToken = Depends(get_validated_token),
    db: AsyncSession = Depends(get_db),
):
    """
    Return the user owning the access token
    """
    return await get_current_user(validated_token=validated_token, db=db)
