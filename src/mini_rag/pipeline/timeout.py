"""Timeout wrapper for blocking collaborator calls."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, TypeVar

from mini_rag.errors import CollaboratorTimeout

T = TypeVar("T")


def call_with_timeout(stage: str, timeout: float, func: Callable[..., T], *args: Any) -> T:
    """Run a blocking collaborator call on a worker thread, bounded by `timeout`.

    The worker is abandoned on timeout and the caller gets `CollaboratorTimeout`.
    Exceptions raised by `func` propagate unchanged.
    """

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"mini-rag-{stage}")
    future = executor.submit(func, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as exc:
        if future.done():
            raise
        raise CollaboratorTimeout(stage, f"timed out after {timeout:.1f}s") from exc
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
