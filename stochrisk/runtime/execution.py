"""Execution wrappers for hosting engine analyses: retry, timeout and timing.

The engine itself is synchronous and never retries or times out; hosts
compose these decorators around registry entries.
"""

import functools
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable

import structlog

from stochrisk.engine.errors import EngineError

logger = structlog.get_logger(__name__)


class ExecutionTimeoutError(TimeoutError):
    """An analysis did not finish within its time limit."""


def with_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
):
    """Retry a callable with exponential back-off.

    Engine request errors (``EngineError``) are raised immediately; any
    other exception is retried up to ``max_retries`` times with delays of
    base_delay, 2 * base_delay, 4 * base_delay, ... The last exception is
    re-raised once retries are exhausted.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            delay = base_delay
            attempt = 0
            while True:
                try:
                    return fn(*args, **kwargs)
                except EngineError:
                    raise
                except Exception as exc:
                    if attempt >= max_retries:
                        logger.error(
                            "with_retry: retries exhausted",
                            fn=getattr(fn, '__name__', repr(fn)),
                            attempts=attempt + 1,
                            error=str(exc),
                        )
                        raise
                    logger.warning(
                        "with_retry: call failed",
                        fn=getattr(fn, '__name__', repr(fn)),
                        error=str(exc),
                        retry_in=delay,
                    )
                    sleep(delay)
                    delay *= 2
                    attempt += 1

        return wrapper

    return decorator


def with_timeout(seconds: float):
    """Run the callable in a worker thread and give up after ``seconds``.

    The worker is not interrupted; its result is discarded once the caller
    has timed out.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            executor = ThreadPoolExecutor(max_workers=1)
            future = executor.submit(fn, *args, **kwargs)
            try:
                return future.result(timeout=seconds)
            except FutureTimeoutError:
                raise ExecutionTimeoutError(
                    f"{getattr(fn, '__name__', 'analysis')} exceeded {seconds}s"
                ) from None
            finally:
                executor.shutdown(wait=False)

        return wrapper

    return decorator


def timed(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Log the wall-clock duration of each call."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return fn(*args, **kwargs)
        finally:
            logger.info(
                "timed: call finished",
                fn=getattr(fn, '__name__', repr(fn)),
                duration_ms=round((time.perf_counter() - start) * 1000, 3),
            )

    return wrapper
