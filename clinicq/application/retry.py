import logging
import time
from typing import Callable, TypeVar

from ..exceptions import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retries(
    operation: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run a read-only operation, retrying transient storage failures.

    Only use this for reads: mutations are not idempotent and must
    surface the first failure to the caller.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TransientStorageError as e:
            if attempt == attempts:
                logger.error(f"Giving up after {attempts} attempts: {e.detail}")
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(f"Transient storage error ({e.detail}), retrying in {delay:.2f}s ({attempts - attempt} attempts left)")
            sleep(delay)
