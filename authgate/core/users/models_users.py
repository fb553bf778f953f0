from datetime import date, datetime
from enum import Enum

from sqlalchemy.orm import Mapped, mapped_column

from authgate.types.sqlalchemy import Base


class UserRole(str, Enum):
    user = "user"
    admin = "admin"


class CoreUser(Base):
    __tablename__ = "core_user"

    id: Mapped[str] = mapped_column(
        primary_key=True,
        index=True,
    )
    username: Mapped[str] = mapped_column(unique=True, index=True)
    email: Mapped[str] = mapped_column(unique=True, index=True)
    password_hash: Mapped[str]
    first_name: Mapped[str]
    last_name: Mapped[str]
    birthday: Mapped[date | None]
    created_on: Mapped[datetime]
    role: Mapped[UserRole] = mapped_column(default=UserRole.user)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
