"""1-initial_oauth_tables

Create Date: 2026-10-19 10:12:41.511270
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pytest_alembic import MigrationContext

import sqlalchemy as sa
from alembic import op

from authgate.types.sqlalchemy import TZDateTime

# revision identifiers, used by Alembic.
revision: str = "3c0b8e1f2a4d"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "core_user",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("created_on", TZDateTime(), nullable=False),
        sa.Column(
            "role",
            sa.Enum("user", "admin", name="userrole"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_core_user_id"), "core_user", ["id"], unique=False)
    op.create_index(
        op.f("ix_core_user_username"),
        "core_user",
        ["username"],
        unique=True,
    )
    op.create_index(op.f("ix_core_user_email"), "core_user", ["email"], unique=True)

    op.create_table(
        "oauth_client",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("secret", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("redirect_uri", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("landing_page", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["core_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index(op.f("ix_oauth_client_id"), "oauth_client", ["id"], unique=False)
    op.create_index(
        op.f("ix_oauth_client_owner_id"),
        "oauth_client",
        ["owner_id"],
        unique=False,
    )

    op.create_table(
        "oauth_consent",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False),
        sa.Column("updated_on", TZDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["oauth_client.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["core_user.id"]),
        sa.PrimaryKeyConstraint("user_id", "client_id"),
    )

    op.create_table(
        "oauth_authorization_code",
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("redirect_uri", sa.String(), nullable=False),
        sa.Column("state_digest", sa.String(), nullable=False),
        sa.Column("created_on", TZDateTime(), nullable=False),
        sa.Column("expires_at", TZDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["oauth_client.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["core_user.id"]),
        sa.PrimaryKeyConstraint("code"),
    )
    op.create_index(
        op.f("ix_oauth_authorization_code_code"),
        "oauth_authorization_code",
        ["code"],
        unique=False,
    )

    op.create_table(
        "oauth_access_token",
        sa.Column("jti", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("created_on", TZDateTime(), nullable=False),
        sa.Column("expires_at", TZDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["oauth_client.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["core_user.id"]),
        sa.PrimaryKeyConstraint("jti"),
    )
    op.create_index(
        op.f("ix_oauth_access_token_jti"),
        "oauth_access_token",
        ["jti"],
        unique=False,
    )
    op.create_index(
        op.f("ix_oauth_access_token_user_id"),
        "oauth_access_token",
        ["user_id"],
        unique=False,
    )

    op.create_table(
        "oauth_refresh_token",
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("created_on", TZDateTime(), nullable=False),
        sa.Column("expires_at", TZDateTime(), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["oauth_client.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["core_user.id"]),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_index(
        op.f("ix_oauth_refresh_token_token"),
        "oauth_refresh_token",
        ["token"],
        unique=False,
    )
    op.create_index(
        op.f("ix_oauth_refresh_token_user_id"),
        "oauth_refresh_token",
        ["user_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("oauth_refresh_token")
    op.drop_table("oauth_access_token")
    op.drop_table("oauth_authorization_code")
    op.drop_table("oauth_consent")
    op.drop_table("oauth_client")
    op.drop_table("core_user")
    sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)


def pre_test_upgrade(
    alembic_runner: "MigrationContext",
    alembic_connection: sa.Connection,
) -> None:
    pass


def test_upgrade(
    alembic_runner: "MigrationContext",
    alembic_connection: sa.Connection,
) -> None:
    tables = sa.inspect(alembic_connection).get_table_names()
    for table in (
        "core_user",
        "oauth_client",
        "oauth_consent",
        "oauth_authorization_code",
        "oauth_access_token",
        "oauth_refresh_token",
    ):
        assert table in tables
