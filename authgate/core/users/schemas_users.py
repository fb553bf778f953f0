from datetime import date

from pydantic import BaseModel, ConfigDict, field_validator

from authgate.utils import validators


class CoreUserCreateRequest(BaseModel):
    """
    The schema is used to register a new account
    """

    username: str
    email: str
    password: str
    first_name: str
    last_name: str
    birthday: date | None = None

    _normalize_email = field_validator("email")(validators.email_normalizer)
    _check_password = field_validator("password")(validators.password_validator)
    _check_username = field_validator("username")(validators.username_validator)


class CoreUser(BaseModel):
    id: str
    username: str
    email: str
    first_name: str
    last_name: str
    birthday: date | None = None

    model_config = ConfigDict(from_attributes=True)


class Greeting(BaseModel):
    """Content of the protected pages"""

    message: str
    user_id: str
    client_id: str
