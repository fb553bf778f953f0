"""File defining the functions called by the endpoints, making queries to the table using the models"""

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.users import models_users


async def get_user_by_id(
    db: AsyncSession,
    user_id: str,
) -> models_users.CoreUser | None:
    """Return user with id from database"""
    result = await db.execute(
        select(models_users.CoreUser).where(models_users.CoreUser.id == user_id),
    )
    return result.scalars().first()


async def get_user_by_email(
    db: AsyncSession,
    email: str,
) -> models_users.CoreUser | None:
    result = await db.execute(
        select(models_users.CoreUser).where(models_users.CoreUser.email == email),
    )
    return result.scalars().first()


async def get_user_by_username(
    db: AsyncSession,
    username: str,
) -> models_users.CoreUser | None:
    result = await db.execute(
        select(models_users.CoreUser).where(
            models_users.CoreUser.username == username,
        ),
    )
    return result.scalars().first()


async def get_user_by_email_or_username(
    db: AsyncSession,
    identifier: str,
) -> models_users.CoreUser | None:
    """
    Return the user whose email or username is `identifier`.
    Emails are stored lowercased, the identifier is compared lowercased against them.
    """
    result = await db.execute(
        select(models_users.CoreUser).where(
            or_(
                models_users.CoreUser.email == identifier.lower().strip(),
                models_users.CoreUser.username == identifier.strip(),
            ),
        ),
    )
    return result.scalars().first()


async def create_user(
    db: AsyncSession,
    user: models_users.CoreUser,
) -> None:
    db.add(user)
    await db.flush()
