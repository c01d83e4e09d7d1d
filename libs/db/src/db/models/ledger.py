from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_BIGINT_ID = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: si_transactions
# ---------------------------


class SiTransaction(Base):
    __tablename__ = "si_transactions"

    id: Mapped[int] = mapped_column(_BIGINT_ID, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    # One statement upload; (user_id, import_id, source_row) makes re-sent
    # commits of the same upload idempotent.
    import_id: Mapped[str] = mapped_column(String, nullable=False)
    source_row: Mapped[int] = mapped_column(Integer, nullable=False)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    # Casefolded, whitespace-collapsed merchant; see
    # ``statement_import.normalizers.merchant_key``.
    merchant_key: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    is_manual_category: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    # sha256 over (merchant_key, amount, occurred_on, kind); not unique since
    # identical same-day purchases are legitimate.
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "import_id", "source_row", name="uq_si_tx_import_row"),
        Index("ix_si_tx_user_fingerprint", "user_id", "fingerprint"),
        CheckConstraint("kind in ('income','expense')", name="ck_si_tx_kind"),
        CheckConstraint("amount > 0", name="ck_si_tx_amount_positive"),
    )


# ---------------------------
# Merchant memory: si_merchant_categories
# ---------------------------


class SiMerchantCategory(Base):
    __tablename__ = "si_merchant_categories"

    id: Mapped[int] = mapped_column(_BIGINT_ID, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    merchant_key: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    # Once a person picked the category it is never replaced by a model guess.
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.false())
    # Forces review of this merchant on every import even when cached.
    always_ask: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "merchant_key", "kind", name="uq_si_merchant_user_key_kind"),
        CheckConstraint("kind in ('income','expense')", name="ck_si_merchant_kind"),
    )


__all__ = [
    "Base",
    "SiMerchantCategory",
    "SiTransaction",
]
