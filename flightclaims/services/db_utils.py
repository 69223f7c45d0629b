"""
Database utility functions with retry logic.
"""
import asyncio
import time
from typing import Any, TypeVar, Callable, Optional
from functools import wraps

from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from flightclaims.core.exceptions import ExternalServiceError
from flightclaims.core.logging import get_logger

logger = get_logger(__name__)


T = TypeVar("T")


def _find_session(args: tuple, kwargs: dict) -> Optional[Session]:
    db = kwargs.get("db")
    if isinstance(db, Session):
        return db
    for arg in args:
        if isinstance(arg, Session):
            return arg
        # Store adapters keep their session on `self.db`
        candidate = getattr(arg, "db", None)
        if isinstance(candidate, Session):
            return candidate
    return None


def _event_loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def is_transient_store_error(exc: Exception) -> bool:
    """True for a record store failure that is worth retrying."""
    return (
        isinstance(exc, ExternalServiceError)
        and exc.service == "record_store"
        and isinstance(exc.original_error, OperationalError)
    )


def with_db_retry(
    max_retries: int = 3,
    retry_delay: float = 0.5,
    exponential_backoff: bool = True,
    rollback_on_error: bool = True,
):
    """
    Decorator for record store operations with automatic retry logic.

    Transient OperationalErrors are retried; once retries are exhausted the
    failure surfaces as an ExternalServiceError so batch processors can skip
    the item and retry it on the next run.

    Called from a running event loop the wrapper never sleeps: the first
    transient failure is raised straight away and the async caller backs
    off through `run_db`, which awaits between attempts.

    Args:
        max_retries: Maximum number of retry attempts
        retry_delay: Initial delay between retries in seconds
        exponential_backoff: Whether to use exponential backoff
        rollback_on_error: Whether to rollback the session on error
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = retry_delay
            retries = 0 if _event_loop_running() else max_retries

            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except OperationalError as e:
                    if rollback_on_error:
                        db = _find_session(args, kwargs)
                        if db is not None:
                            db.rollback()

                    if attempt < retries:
                        logger.warning(
                            f"Record store operation {func.__name__} failed "
                            f"(attempt {attempt + 1}/{retries + 1}): {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        time.sleep(delay)
                        if exponential_backoff:
                            delay *= 2
                    else:
                        logger.error(
                            f"Record store operation {func.__name__} failed after "
                            f"{retries + 1} attempt(s): {e}"
                        )
                        raise ExternalServiceError(
                            f"Record store operation {func.__name__} failed",
                            service="record_store",
                            original_error=e,
                        )
                except SQLAlchemyError as e:
                    # Non-retryable error; leave the session usable for sibling items
                    db = _find_session(args, kwargs)
                    if db is not None:
                        db.rollback()
                    logger.error(f"Non-retryable record store error in {func.__name__}: {e}")
                    raise ExternalServiceError(
                        f"Record store operation {func.__name__} failed",
                        service="record_store",
                        original_error=e,
                    )

            raise ExternalServiceError(
                f"Record store operation {func.__name__} failed",
                service="record_store",
            )

        return wrapper
    return decorator


async def run_db(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    retry_delay: float = 0.5,
    **kwargs: Any,
) -> T:
    """
    Call a record store operation from async code.

    Transient failures are retried with exponential backoff using
    `asyncio.sleep`, so a store outage never blocks the event loop and
    per-item timeouts keep firing.
    """
    delay = retry_delay
    for attempt in range(max_retries + 1):
        try:
            return func(*args, **kwargs)
        except ExternalServiceError as e:
            if not is_transient_store_error(e) or attempt >= max_retries:
                raise
            logger.warning(
                f"Record store call {getattr(func, '__name__', func)!s} failed "
                f"(attempt {attempt + 1}/{max_retries + 1}); retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
            delay *= 2

    raise ExternalServiceError("Record store call failed", service="record_store")
