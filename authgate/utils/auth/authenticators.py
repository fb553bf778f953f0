from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.users import cruds_users
from authgate.core.users.models_users import UserRole
from authgate.core.utils.security import verify_password


@dataclass(frozen=True)
class Identity:
    """The authenticated user, as seen by the authorization flow"""

    user_id: str
    role: UserRole
    first_name: str


@dataclass(frozen=True)
class PasswordCredential:
    # An email address or a username
    identifier: str
    password: str


class AuthenticationError(Exception):
    def __init__(self):
        super().__init__("Invalid credentials")


class BaseAuthenticator(ABC):
    """
    The authorization flow only depends on this class to check the credentials of a user.

    To support a new kind of credential, create a new class inheriting from `BaseAuthenticator`
    and override `verify`. The `get_authenticator` dependency returns the authenticator used by the login endpoint.
    """

    @abstractmethod
    async def verify(self, credential: Any) -> Identity:
        """
        Return the identity of the user owning the credential or raise an `AuthenticationError`
        """


class PasswordAuthenticator(BaseAuthenticator):
    """
    Check an email or username and password pair against the bcrypt hash of the user
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def verify(self, credential: PasswordCredential) -> Identity:
        user = await cruds_users.get_user_by_email_or_username(
            db=self.db,
            identifier=credential.identifier,
        )
        if user is None:
            # In order to prevent timing attacks, we simulate the delay the password validation would have taken if the account existed
            verify_password(credential.password, None)
            raise AuthenticationError
        if not verify_password(credential.password, user.password_hash):
            raise AuthenticationError
        return Identity(user_id=user.id, role=user.role, first_name=user.first_name)
