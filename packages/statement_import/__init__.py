"""Public interface for the ``statement_import`` package.

Symbol re-exports only; no runtime logic lives here.
"""

from .api import check_and_save, classify, detect_date_format
from .classifier import Classifier
from .errors import (
    ClassificationServiceError,
    PhaseError,
    RepositoryError,
    StatementImportError,
    StatementReadError,
    ValidationError,
)
from .models import (
    ClassificationResult,
    ClassificationSource,
    ClassificationStats,
    ClassifyOutcome,
    CommitRecord,
    Confidence,
    DateFormat,
    DateFormatDetection,
    DuplicateCandidate,
    ImportType,
    MerchantGroup,
    ParsedTransaction,
    ParseError,
    Phase,
    SaveOutcome,
    TransactionKind,
)
from .review import ReviewGrouper, next_uncategorized
from .session import ImportSession

__all__ = [
    # API
    "check_and_save",
    "classify",
    "detect_date_format",
    # Orchestration
    "Classifier",
    "ImportSession",
    "ReviewGrouper",
    "next_uncategorized",
    # Models
    "ClassificationResult",
    "ClassificationSource",
    "ClassificationStats",
    "ClassifyOutcome",
    "CommitRecord",
    "Confidence",
    "DateFormat",
    "DateFormatDetection",
    "DuplicateCandidate",
    "ImportType",
    "MerchantGroup",
    "ParseError",
    "ParsedTransaction",
    "Phase",
    "SaveOutcome",
    "TransactionKind",
    # Errors
    "ClassificationServiceError",
    "PhaseError",
    "RepositoryError",
    "StatementImportError",
    "StatementReadError",
    "ValidationError",
]
