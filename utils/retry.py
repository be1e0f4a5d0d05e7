# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Retry Utilities - Retry provider calls with exponential backoff
"""
import time
import logging
from functools import wraps
from typing import Callable, TypeVar, Any, Optional

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    retry_on: tuple = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator that retries a call with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        retry_on: Tuple of exception types that may be retried
        retry_if: Optional predicate; an exception matching retry_on is only
            retried when this returns True (e.g. 429/5xx but not 404)

    Returns:
        Decorated function that will retry on matching exceptions
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0

            while True:
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"Retry successful for {func.__name__} after {attempt} attempts")
                    return result

                except retry_on as e:
                    if retry_if is not None and not retry_if(e):
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func.__name__}. "
                            f"Final error: {e}"
                        )
                        raise

                    delay = min(base_delay * (exponential_base ** attempt), max_delay)
                    logger.warning(
                        f"Error in {func.__name__} (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.1f} seconds..."
                    )
                    time.sleep(delay)
                    attempt += 1

        return wrapper
    return decorator
