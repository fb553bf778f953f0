from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from authgate.types.sqlalchemy import Base


class OAuthClient(Base):
    """
    A relying party allowed to ask for authorization codes.

    Clients are immutable once created.
    """

    __tablename__ = "oauth_client"

    id: Mapped[str] = mapped_column(primary_key=True, index=True)
    secret: Mapped[str]
    name: Mapped[str] = mapped_column(unique=True)
    redirect_uri: Mapped[str]
    owner_id: Mapped[str] = mapped_column(ForeignKey("core_user.id"), index=True)
    # Page the user is sent to after a successful token exchange. The redirect_uri is used when not set
    landing_page: Mapped[str | None] = mapped_column(default=None)
