"""Bounded worker pool for per-step sub-operations.

Overlap queries and batched classifier calls share the datasource and the
LLM rate limit with every other run, so a step never fans out beyond
``max_workers``. Each submission runs in a copy of the caller's context so
structlog context and step metrics follow the work into pool threads.
"""

from __future__ import annotations

import contextvars
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

from schemasense.core.errors import RetryExhaustedError, RunCancelledError

if TYPE_CHECKING:
    from schemasense.pipeline.base import CancellationToken


def run_bounded[T, R](
    items: Iterable[T],
    fn: Callable[[T], R],
    max_workers: int = 4,
    cancel_token: CancellationToken | None = None,
    on_complete: Callable[[int, int], None] | None = None,
) -> list[tuple[T, R | None, BaseException | None]]:
    """Apply ``fn`` to every item with at most ``max_workers`` in flight.

    Per-item exceptions are returned next to the item, in input order.
    Cancellation is checked before each submission and after each completion;
    once requested, queued items are dropped and ``RunCancelledError`` is
    raised. ``RetryExhaustedError`` from any item aborts the batch the same way.
    ``on_complete(done, total)`` is called from the calling thread after each item.

    Raises:
        RunCancelledError: cancellation requested while items were pending
        RetryExhaustedError: a sub-operation exhausted its retries
    """
    items = list(items)
    results: list[tuple[T, R | None, BaseException | None]] = [
        (item, None, None) for item in items
    ]
    if not items:
        return results

    workers = max(1, max_workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures: dict[Future[R], int] = {}
        next_index = 0
        completed = 0

        def submit_more() -> None:
            nonlocal next_index
            while next_index < len(items) and len(futures) < workers:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                ctx = contextvars.copy_context()
                future = pool.submit(ctx.run, fn, items[next_index])
                futures[future] = next_index
                next_index += 1

        try:
            submit_more()
            while futures:
                done = next(as_completed(futures))
                index = futures.pop(done)
                error = done.exception()
                if isinstance(error, (RunCancelledError, RetryExhaustedError)):
                    raise error
                if error is None:
                    results[index] = (items[index], done.result(), None)
                else:
                    results[index] = (items[index], None, error)
                completed += 1
                if on_complete is not None:
                    on_complete(completed, len(items))
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                submit_more()
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    return results
