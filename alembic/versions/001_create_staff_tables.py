"""create staff roles and users

Revision ID: 001
Revises:
Create Date: 2026-09-28 10:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Admins approve registrations, confirm payments, run entity creation and
# purge expired sessions. Staff can sign in and read session status.
STAFF_ROLES = ("admin", "staff")


def upgrade() -> None:
    roles = op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(32), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_roles_id", "roles", ["id"], unique=False)
    op.create_index("ix_roles_name", "roles", ["name"], unique=False)

    users = op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
    )
    op.create_index("ix_users_id", "users", ["id"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.bulk_insert(roles, [{"name": name} for name in STAFF_ROLES])

    # Settings are loaded by env.py before any revision runs.
    from app.core.config import settings
    from app.core.security import get_password_hash

    admin_role_id = op.get_bind().execute(
        sa.text("SELECT id FROM roles WHERE name = 'admin'")
    ).scalar_one()
    op.bulk_insert(
        users,
        [
            {
                "email": settings.first_admin_email,
                "name": "Administrator",
                "password_hash": get_password_hash(settings.first_admin_password),
                "role_id": admin_role_id,
            }
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_roles_name", table_name="roles")
    op.drop_index("ix_roles_id", table_name="roles")
    op.drop_table("roles")
