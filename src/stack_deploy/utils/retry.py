"""Retry and polling helpers for CloudFormation calls."""

import random
import time
from typing import Callable, Optional, TypeVar

from botocore.exceptions import ClientError

from stack_deploy.utils.errors import NETWORK_ERRORS, PollTimeoutError, ErrorContext, error_code, error_message
from stack_deploy.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class RetryStrategy:
    """Exponential backoff for transient errors on read-only calls.

    Mutating CloudFormation calls are never retried here: they carry client
    request tokens and their failures are surfaced to the caller.
    """

    TRANSIENT_ERROR_CODES = frozenset({
        'RequestTimeout',
        'ServiceUnavailable',
        'ThrottlingException',
        'Throttling',
        'TooManyRequestsException',
        'RequestLimitExceeded',
        'InternalFailure',
    })

    def __init__(self, max_retries: int = 5, base_delay: float = 1.0, max_delay: float = 30.0,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize retry strategy.

        Args:
            max_retries: Retries after the first attempt
            base_delay: Delay before the first retry, doubled on every further one
            max_delay: Upper bound of a single delay
            sleep: Function used to wait between attempts
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    def is_transient(self, error: Exception) -> bool:
        if isinstance(error, NETWORK_ERRORS):
            return True
        return isinstance(error, ClientError) and error_code(error) in self.TRANSIENT_ERROR_CODES

    def delay(self, retry: int) -> float:
        """Backoff before retry number ``retry`` (0-based), with up to 10% jitter."""
        delay = min(self.base_delay * (2 ** retry), self.max_delay)
        return delay + random.uniform(0, delay * 0.1)

    def execute_with_retry(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Call ``func``, retrying transient failures.

        Raises:
            The last exception if it is not transient or retries are exhausted
        """
        retry = 0
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if retry >= self.max_retries or not self.is_transient(e):
                    raise
                delay = self.delay(retry)
                logger.warning(f"{getattr(func, '__name__', 'call')} failed ({self._describe(e)}), "
                               f"retry {retry + 1}/{self.max_retries} in {delay:.2f}s")
                self.sleep(delay)
                retry += 1

    @staticmethod
    def _describe(error: Exception) -> str:
        if isinstance(error, ClientError):
            return f"{error_code(error)}: {error_message(error)}"
        return f"{type(error).__name__}: {error}"


def poll_until(
    fetch: Callable[[], T],
    is_done: Callable[[T], bool],
    interval: float,
    timeout: float,
    description: str,
    context: Optional[ErrorContext] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic
) -> T:
    """Call ``fetch`` until ``is_done`` accepts its result.

    Args:
        fetch: Function returning the latest observation
        is_done: Predicate deciding whether the observation is terminal
        interval: Seconds to wait between observations
        timeout: Seconds after which polling gives up
        description: What is being waited for, used in log and error messages
        context: Error context attached to a timeout
        sleep: Function used to wait between observations
        clock: Monotonic clock

    Returns:
        The first observation accepted by ``is_done``

    Raises:
        PollTimeoutError: If no terminal observation arrives within ``timeout``
    """
    deadline = clock() + timeout
    while True:
        observation = fetch()
        if is_done(observation):
            return observation

        if clock() >= deadline:
            raise PollTimeoutError(
                f"Timed out after {timeout:.0f}s waiting for {description}",
                context=context,
                suggestions=['Raise the timeout in the settings section of the config file']
            )

        logger.debug(f"Still waiting for {description}")
        sleep(interval)
