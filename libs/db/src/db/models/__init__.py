"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the statement import ledger used by ``statement_import``.
"""

from .ledger import Base, SiMerchantCategory, SiTransaction

__all__ = [
    "Base",
    "SiMerchantCategory",
    "SiTransaction",
]
