import logging
import time

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import TransactionError

logger = logging.getLogger(__name__)


def is_retryable(exc):
    return isinstance(exc, TransactionError) and exc.retryable


def run_with_retry(fn, attempts=3, backoff_seconds=0.05, sleep=time.sleep):
    """
    Call `fn()` and retry it while it fails with a retryable TransactionError
    (serialization abort, deadlock). Waits backoff_seconds * 2**n between tries.
    Every other error, and the last retryable one, propagates.
    """
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=backoff_seconds),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
    return retrying(fn)
