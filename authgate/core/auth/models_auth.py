from datetime import datetime

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from authgate.types.sqlalchemy import Base


class Consent(Base):
    """
    A user decision about a client. There is at most one record per (user, client), the latest decision wins.
    """

    __tablename__ = "oauth_consent"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("core_user.id"),
        primary_key=True,
    )
    client_id: Mapped[str] = mapped_column(
        ForeignKey("oauth_client.id"),
        primary_key=True,
    )
    granted: Mapped[bool]
    updated_on: Mapped[datetime]


class AuthorizationCode(Base):
    __tablename__ = "oauth_authorization_code"

    code: Mapped[str] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("core_user.id"))
    client_id: Mapped[str] = mapped_column(ForeignKey("oauth_client.id"))
    redirect_uri: Mapped[str]
    # sha256 of the `state` the code was issued for
    state_digest: Mapped[str]
    created_on: Mapped[datetime]
    expires_at: Mapped[datetime]


class AccessToken(Base):
    """
    Persisted mirror of a signed access token, identified by the token `jti` claim.
    """

    __tablename__ = "oauth_access_token"

    jti: Mapped[str] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("core_user.id"), index=True)
    client_id: Mapped[str] = mapped_column(ForeignKey("oauth_client.id"))
    created_on: Mapped[datetime]
    expires_at: Mapped[datetime]


class RefreshToken(Base):
    __tablename__ = "oauth_refresh_token"

    token: Mapped[str] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("core_user.id"), index=True)
    client_id: Mapped[str] = mapped_column(ForeignKey("oauth_client.id"))
    created_on: Mapped[datetime]
    expires_at: Mapped[datetime]
    revoked: Mapped[bool] = mapped_column(default=False)
