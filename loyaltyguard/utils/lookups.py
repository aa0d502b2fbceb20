"""
Guarded external lookups.

Every call to an external collaborator (ledger counts, duplicate history,
semantic oracle) goes through guarded_call: it runs with an explicit
timeout and turns any failure into a documented fallback value instead of
an exception. The Lookup result says whether the value is real or the
fallback.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Shared pool for collaborator calls; a timed-out call keeps its worker until
# the underlying client gives up.
_LOOKUP_POOL = ThreadPoolExecutor(max_workers=16, thread_name_prefix="lookup")


@dataclass(frozen=True)
class Lookup(Generic[T]):
    value: T
    degraded: bool = False
    error: Optional[str] = None


def guarded_call(
    fn: Callable[..., T],
    *args: Any,
    timeout: Optional[float],
    fallback: T,
    label: str = "lookup",
    **kwargs: Any,
) -> Lookup[T]:
    """
    Run fn(*args, **kwargs) with a timeout.

    Returns Lookup(value) on success, Lookup(fallback, degraded=True, error)
    on timeout or any exception raised by fn.
    """
    future = _LOOKUP_POOL.submit(fn, *args, **kwargs)
    try:
        return Lookup(value=future.result(timeout=timeout))
    except FuturesTimeoutError:
        future.cancel()
        logger.warning(f"{label} timed out after {timeout}s - using fallback")
        return Lookup(value=fallback, degraded=True, error="timeout")
    except Exception as e:
        logger.warning(f"{label} failed: {e} - using fallback")
        return Lookup(value=fallback, degraded=True, error=str(e)[:200])
