"""Create users, otp_challenges and notes tables

Revision ID: 001
Revises: None
Create Date: 2024-06-03 00:00:00.000000+00:00

What:  Initial schema: accounts, pending one-time codes, and notes.
How:   PostgreSQL types (native UUID, TIMESTAMP WITH TIME ZONE).

Rollback: downgrade() drops all three tables (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "email",
            sa.String(255),
            nullable=False,
            comment="Account email, trimmed and lower-cased",
        ),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("age", sa.Integer(), nullable=False),
        sa.Column(
            "is_verified",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
            comment="Set once, on the first successful code verification",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # One row per email with a pending code; locked FOR UPDATE while a code
    # is issued or checked
    op.create_table(
        "otp_challenges",
        sa.Column(
            "email",
            sa.String(255),
            nullable=False,
            comment="Normalized email the code was sent to",
        ),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("purpose", sa.String(20), nullable=False),
        sa.Column(
            "attempts",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Failed verification attempts against this code",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("email"),
    )

    op.create_table(
        "notes",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column(
            "content",
            sa.Text(),
            nullable=False,
            comment="Note body, up to 10,000 characters",
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    # Serves "my notes, newest first" without a sort step
    op.create_index(
        "idx_notes_user_created_at",
        "notes",
        ["user_id", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    """Drop all tables. Destructive: every account and note is lost."""
    op.drop_index("idx_notes_user_created_at", table_name="notes")
    op.drop_table("notes")
    op.drop_table("otp_challenges")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
