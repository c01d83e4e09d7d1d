"""OpenAI-backed merchant classification service.

Public API:
    - :class:`OpenAIClassificationService`

One ``classify`` call sends one page of distinct merchants to the Responses
API and returns one :class:`~statement_import.models.ServiceDecision` per
merchant, in input order. Transient HTTP failures (429 and 5xx) are retried
with jittered backoff; anything else, and exhausted retries, raise
``ClassificationServiceError``. No client is created and no environment is
read at import time.
"""

from __future__ import annotations

import json
import random
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from openai import OpenAI

from . import prompting
from .categorization import parse_and_align_decisions
from .errors import ClassificationServiceError
from .logging_setup import get_logger
from .models import MerchantQuery, ServiceDecision

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20
_DEFAULT_MODEL: str = "gpt-5-mini"

_logger = get_logger("statement_import.categorize")


def extract_response_json(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON object from a Responses API result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``. Raises ``ValueError`` when no text is
    found or it is not JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None) or []
        content = getattr(output[0], "content", None) if output else None
        if content:
            candidate = getattr(content[0], "text", None)
            text = candidate if isinstance(candidate, str) else None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Invalid response: expected a JSON object at top level")
    return decoded


def _is_retryable(exc: BaseException) -> bool:
    """True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    base = _BACKOFF_SCHEDULE_SEC[min(attempt_no - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


class OpenAIClassificationService:
    """Classify merchants with the OpenAI Responses API.

    ``client_factory`` defaults to ``OpenAI`` (which reads ``OPENAI_API_KEY``)
    and is called once per page so retries reuse the same client.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.model = model or _DEFAULT_MODEL
        self._client_factory = client_factory

    def _create_client(self) -> Any:
        if self._client_factory is not None:
            return self._client_factory()
        return OpenAI()

    def classify(self, items: Sequence[MerchantQuery]) -> list[ServiceDecision]:
        if not items:
            return []
        payload = [
            {
                "idx": i,
                "merchant": q.merchant_name,
                "kind": str(q.kind),
                "sample_amount": str(q.sample_amount) if q.sample_amount is not None else None,
            }
            for i, q in enumerate(items)
        ]
        user_content = prompting.build_user_content(prompting.serialize_merchants_to_json(payload))
        kinds = [q.kind for q in items]

        client = self._create_client()
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = client.responses.create(
                    model=self.model,
                    instructions=prompting.build_system_instructions(),
                    input=user_content,
                    text={"format": prompting.build_response_format()},
                )
                decisions = parse_and_align_decisions(
                    extract_response_json(resp), kinds=kinds
                )
                _logger.info(
                    "classify:service_done merchants=%d latency_ms=%.2f",
                    len(items),
                    (time.perf_counter() - t0) * 1000.0,
                )
                return decisions
            except Exception as e:  # noqa: BLE001
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    _logger.error(
                        "classify:service_failed merchants=%d attempt=%d latency_ms=%.2f error=%s",
                        len(items),
                        attempt,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise ClassificationServiceError(
                        f"classification failed for {len(items)} merchants: {e}"
                    ) from e
                _logger.warning(
                    "classify:service_retry merchants=%d attempt=%d latency_ms=%.2f error=%s",
                    len(items),
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                _sleep_backoff(attempt)
                attempt += 1


__all__ = ["OpenAIClassificationService", "extract_response_json"]
