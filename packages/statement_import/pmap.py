"""Bounded-concurrency map over a thread pool, in the spirit of ``p-map``.

- ``concurrency`` caps how many mapper calls run at once.
- Output preserves input order regardless of completion order.
- ``stop_on_error`` (default True) fails fast; when False all mappers run and
  failures are raised together as an ``ExceptionGroup``.
- ``should_stop`` is polled before each submission; once it returns True no
  new work starts, in-flight calls finish, and only the results of items that
  were started are returned (still in input order). This is how a caller
  abandons a batch it no longer needs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    should_stop: Callable[[], bool] | None = None,
) -> list[OutT]:
    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(iterable)
    results: dict[int, OutT] = {}
    errors: list[Exception] = []
    future_to_idx: dict[Future[OutT], int] = {}
    stopped = False

    def _submit(pool: ThreadPoolExecutor) -> Future[OutT] | None:
        nonlocal stopped
        if stopped or (should_stop is not None and should_stop()):
            stopped = True
            return None
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: set[Future[OutT]] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)
            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in sorted(results)]


__all__ = ["p_map"]
