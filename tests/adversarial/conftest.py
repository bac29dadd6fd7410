"""
Shared fixtures for adversarial tests.

Provides a helper that releases several callers at once, so race tests
hit the same records as close to simultaneously as threads allow.
"""

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from confidant.domain.exceptions import ConfidantError


@pytest.fixture
def race() -> Callable[[Sequence[Callable[[], Any]]], list[Any]]:
    """
    Run callables concurrently behind a barrier.

    Returns one entry per callable, in order: its return value, or the
    domain error it raised. Anything else propagates and fails the test.
    """

    def _race(calls: Sequence[Callable[[], Any]]) -> list[Any]:
        barrier = threading.Barrier(len(calls))

        def run(call: Callable[[], Any]) -> Any:
            barrier.wait()
            try:
                return call()
            except ConfidantError as e:
                return e

        with ThreadPoolExecutor(max_workers=len(calls)) as executor:
            futures = [executor.submit(run, call) for call in calls]
            return [f.result() for f in futures]

    return _race
