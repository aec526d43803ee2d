import time
import asyncio
import functools
import logging

logger = logging.getLogger("blog_platform.timing")

SLOW_CALL_MS = 1000.0


def _report(name: str, started: float) -> None:
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    if elapsed_ms >= SLOW_CALL_MS:
        logger.warning(f"[timing] {name} took {elapsed_ms:.2f} ms")
    else:
        logger.debug(f"[timing] {name} took {elapsed_ms:.2f} ms")


def timeit(label: str = None):
    """
    Decorator that logs how long a function (sync or async) took.

    Calls slower than SLOW_CALL_MS are logged as warnings.

        @timeit("login_user")
        async def login_user(...):
            ...
    """

    def _decorate(func):
        name = label or getattr(func, "__qualname__", getattr(func, "__name__", "function"))

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def _aw(*args, **kwargs):
                start = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _report(name, start)

            return _aw

        @functools.wraps(func)
        def _w(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _report(name, start)

        return _w

    return _decorate
