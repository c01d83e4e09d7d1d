# ruff: noqa: I001
"""Statement import tables: imported transactions and merchant memory.

Revision ID: 0001_statement_import_core
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_statement_import_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # si_transactions
    op.create_table(
        "si_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("import_id", sa.String(), nullable=False),
        sa.Column("source_row", sa.Integer(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("merchant_key", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("occurred_on", sa.Date(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column(
            "is_manual_category",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("user_id", "import_id", "source_row", name="uq_si_tx_import_row"),
        sa.CheckConstraint("kind in ('income','expense')", name="ck_si_tx_kind"),
        sa.CheckConstraint("amount > 0", name="ck_si_tx_amount_positive"),
    )
    op.create_index(
        "ix_si_tx_user_fingerprint",
        "si_transactions",
        ["user_id", "fingerprint"],
        unique=False,
    )

    # si_merchant_categories
    op.create_table(
        "si_merchant_categories",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("merchant_key", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("is_manual", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("always_ask", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint(
            "user_id", "merchant_key", "kind", name="uq_si_merchant_user_key_kind"
        ),
        sa.CheckConstraint("kind in ('income','expense')", name="ck_si_merchant_kind"),
    )


def downgrade() -> None:
    op.drop_table("si_merchant_categories")
    op.drop_index("ix_si_tx_user_fingerprint", table_name="si_transactions")
    op.drop_table("si_transactions")
