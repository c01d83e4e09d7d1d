"""Runtime tunables for the import pipeline, read from the environment.

Entrypoints load a local ``.env`` with python-dotenv first; this module only
reads ``os.environ`` and never loads files itself.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .models import DateFormat

_PREFIX = "STATEMENT_IMPORT_"


def _env_int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 1) -> int:
    raw = env.get(_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{_PREFIX}{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{_PREFIX}{name} must be a number, got {raw!r}") from exc
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{_PREFIX}{name} must be within [0, 1], got {value}")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{_PREFIX}{name} must be a boolean (true/false), got {raw!r}")


def _env_date_format(env: Mapping[str, str], name: str, default: DateFormat) -> DateFormat:
    raw = env.get(_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        fmt = DateFormat(raw.strip().upper())
    except ValueError as exc:
        choices = ", ".join(f.value for f in DateFormat if f is not DateFormat.AUTO)
        raise ValueError(f"{_PREFIX}{name} must be one of {choices}, got {raw!r}") from exc
    if fmt is DateFormat.AUTO:
        raise ValueError(f"{_PREFIX}{name} cannot be AUTO")
    return fmt


@dataclass(frozen=True, slots=True)
class ImportSettings:
    confidence_threshold: float = 0.7
    chunk_size: int = 25
    concurrency: int = 4
    sample_size: int = 15
    default_date_format: DateFormat = DateFormat.DD_MM_YYYY
    model: str = "gpt-5-mini"
    ai_column_mapping: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ImportSettings:
        src = os.environ if env is None else env
        # slots=True hides field defaults on the class; read them off an instance
        base = cls()
        model = (src.get(_PREFIX + "MODEL") or "").strip() or base.model
        return cls(
            confidence_threshold=_env_float(
                src, "CONFIDENCE_THRESHOLD", base.confidence_threshold
            ),
            chunk_size=_env_int(src, "CHUNK_SIZE", base.chunk_size),
            concurrency=_env_int(src, "CONCURRENCY", base.concurrency),
            sample_size=_env_int(src, "SAMPLE_SIZE", base.sample_size),
            default_date_format=_env_date_format(
                src, "DEFAULT_DATE_FORMAT", base.default_date_format
            ),
            model=model,
            ai_column_mapping=_env_bool(src, "AI_COLUMN_MAPPING", base.ai_column_mapping),
        )


__all__ = ["ImportSettings"]
