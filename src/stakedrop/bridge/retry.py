"""Adapter calls with mandatory timeouts and bounded retries.

Every chain call made by the coordinator goes through AdapterCaller:

1. The call runs on a worker thread and is abandoned after
   ``timeout_seconds``. A timeout is an AdapterFailure, never success.
2. Transient AdapterFailures are retried with exponential backoff
   (tenacity) up to ``max_attempts``.
3. When attempts run out, StageFailed is raised with the last error.

Anything that is not a transient AdapterFailure (ProofRejected, a
permanent AdapterFailure, a programming error) propagates on the first
occurrence. BridgeErrors raised by an adapter without a status get the
caller's status attached on the way out.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from stakedrop.config import RetryParams
from stakedrop.errors import AdapterFailure, BridgeError, StageFailed

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, AdapterFailure) and exc.transient


class AdapterCaller:
    """Runs adapter calls with a timeout and a retry policy."""

    def __init__(
        self,
        retry: RetryParams,
        timeout_seconds: float,
        max_workers: int = 8,
    ) -> None:
        self._retry = retry
        self._timeout = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="stakedrop-adapter",
        )

    def call(
        self,
        stage: str,
        fn: Callable[..., T],
        *args: Any,
        status: Optional[Any] = None,
        **kwargs: Any,
    ) -> T:
        """Call ``fn(*args, **kwargs)`` under the timeout and retry policy.

        ``stage`` names the lifecycle step for logs and errors; ``status``
        is the last known epoch status, attached to any error raised.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._retry.max_attempts),
            wait=wait_exponential(
                multiplier=self._retry.backoff_multiplier,
                max=self._retry.backoff_max_seconds,
            ),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry(stage),
            reraise=False,
        )
        try:
            return retrying(self._attempt, stage, fn, args, kwargs, status)
        except RetryError as e:
            last = e.last_attempt.exception()
            LOGGER.error(
                "Stage %s exhausted %d attempts: %s",
                stage, self._retry.max_attempts, last,
                extra={"event": "stage_failed", "data": {"stage": stage}},
            )
            raise StageFailed(
                stage,
                f"adapter retries exhausted after {self._retry.max_attempts} attempts: {last}",
                status,
                cause=last,
            ) from last
        except BridgeError as e:
            e.with_status(status)
            raise

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _attempt(
        self,
        stage: str,
        fn: Callable[..., T],
        args: tuple,
        kwargs: dict,
        status: Optional[Any],
    ) -> T:
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeout as e:
            future.cancel()
            raise AdapterFailure(
                f"{stage}: adapter call timed out after {self._timeout}s", status,
            ) from e

    @staticmethod
    def _log_retry(stage: str) -> Callable[[RetryCallState], None]:
        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            LOGGER.warning(
                "Retrying %s after attempt %d: %s",
                stage, state.attempt_number, exc,
                extra={
                    "event": "adapter_retry",
                    "data": {"stage": stage, "attempt": state.attempt_number},
                },
            )
        return _before_sleep
