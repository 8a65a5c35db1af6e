"""Bounded-concurrency, order-preserving map over a thread pool.

``p_map`` is the one place the package fans work out to threads: the three
explorer feeds of a wallet fetch and the per-category LLM groups of a bulk
run. Results come back in input order. A wall-clock ``deadline`` (a
``time.monotonic()`` value) stops new submissions; items that never started
are handed to ``on_expired`` so the caller can report them instead of losing
them silently.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


# Mappers may return this sentinel to drop an element from the output.
p_map_skip: object = _Skip()


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    deadline: float | None = None,
    on_expired: Callable[[InT], OutT | object] | None = None,
    thread_name_prefix: str = "ol-pmap",
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` in flight.

    - Output preserves input order and omits ``p_map_skip`` results.
    - ``stop_on_error=True`` re-raises the first mapper error and cancels
      work that has not started. With ``False`` every item runs and failures
      are raised together as an ``ExceptionGroup``.
    - Once ``time.monotonic()`` passes ``deadline`` no further items are
      submitted. Each remaining item is passed to ``on_expired`` (its return
      value takes the item's slot) or dropped when no callback is given.
      Items already running are allowed to finish.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = list(enumerate(iterable))
    results: dict[int, OutT | object] = {}
    errors: list[Exception] = []
    cursor = 0
    future_to_idx: dict[Future, int] = {}

    def _expired() -> bool:
        return deadline is not None and time.monotonic() >= deadline

    def _submit(pool: ThreadPoolExecutor) -> Future | None:
        nonlocal cursor
        if cursor >= len(items) or _expired():
            return None
        idx, item = items[cursor]
        cursor += 1
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=thread_name_prefix) as pool:
        active: set[Future] = set()
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

    # Anything left unsubmitted was cut off by the deadline.
    for idx, item in items[cursor:]:
        results[idx] = on_expired(item) if on_expired is not None else p_map_skip

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    out: list[OutT] = []
    for i in range(len(items)):
        val = results.get(i, p_map_skip)
        if val is p_map_skip:
            continue
        out.append(val)  # type: ignore[arg-type]
    return out


__all__ = ["p_map", "p_map_skip"]
