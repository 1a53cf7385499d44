"""create registration sessions table

Revision ID: 002
Revises: 001
Create Date: 2026-09-29 09:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "registration_sessions",
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("flow", sa.String(32), nullable=False),
        sa.Column("natural_key", sa.String(320), nullable=False),
        sa.Column("active_key", sa.String(360), nullable=True),
        sa.Column("state", sa.String(32), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("lease_until", sa.DateTime(), nullable=True),
        sa.Column("staged_data", sa.JSON(), nullable=False),
        sa.Column("progress", sa.JSON(), nullable=False),
        sa.Column("history", sa.JSON(), nullable=False),
        sa.Column("last_error", sa.JSON(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("session_id"),
        # NULLs never collide, so terminal sessions release their natural key.
        sa.UniqueConstraint("active_key", name="uq_registration_sessions_active_key"),
    )
    op.create_index(
        "ix_registration_sessions_natural_key", "registration_sessions", ["natural_key"], unique=False
    )
    op.create_index(
        "ix_registration_sessions_state", "registration_sessions", ["state"], unique=False
    )
    op.create_index(
        "ix_registration_sessions_expires_at", "registration_sessions", ["expires_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_registration_sessions_expires_at", table_name="registration_sessions")
    op.drop_index("ix_registration_sessions_state", table_name="registration_sessions")
    op.drop_index("ix_registration_sessions_natural_key", table_name="registration_sessions")
    op.drop_table("registration_sessions")
