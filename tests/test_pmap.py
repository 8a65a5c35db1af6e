from __future__ import annotations

import threading
import time

import pytest

from onchain_ledger.pmap import p_map, p_map_skip


def test_results_keep_input_order() -> None:
    def slow_first(x: int) -> int:
        time.sleep(0.05 if x == 0 else 0)
        return x * 10

    assert p_map(range(5), slow_first, concurrency=3) == [0, 10, 20, 30, 40]


def test_skip_sentinel_drops_items() -> None:
    out = p_map([1, 2, 3, 4], lambda x: p_map_skip if x % 2 else x, concurrency=2)
    assert out == [2, 4]


def test_concurrency_is_bounded() -> None:
    lock = threading.Lock()
    state = {"now": 0, "peak": 0}

    def work(_: int) -> None:
        with lock:
            state["now"] += 1
            state["peak"] = max(state["peak"], state["now"])
        time.sleep(0.02)
        with lock:
            state["now"] -= 1

    p_map(range(8), work, concurrency=2)
    assert state["peak"] <= 2


def test_stop_on_error_reraises_first_failure() -> None:
    def boom(x: int) -> int:
        if x == 1:
            raise KeyError("bad item")
        return x

    with pytest.raises(KeyError):
        p_map([0, 1, 2], boom, concurrency=1)


def test_collects_errors_when_not_stopping() -> None:
    def boom(x: int) -> int:
        if x:
            raise ValueError(f"item {x}")
        return x

    with pytest.raises(ExceptionGroup) as exc:
        p_map([0, 1, 2], boom, concurrency=2, stop_on_error=False)
    assert sorted(str(e) for e in exc.value.exceptions) == ["item 1", "item 2"]


def test_expired_deadline_hands_items_to_callback() -> None:
    calls: list[int] = []
    out = p_map(
        [1, 2],
        lambda x: calls.append(x) or x,
        concurrency=1,
        deadline=time.monotonic() - 1,
        on_expired=lambda x: -x,
    )
    assert out == [-1, -2]
    assert calls == []


def test_rejects_bad_concurrency() -> None:
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=0)
