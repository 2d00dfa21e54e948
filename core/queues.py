# -*- coding: utf-8 -*-
"""
Priority request queue with bounded concurrency and retry.

Jobs are ordered by priority (higher first, FIFO within a priority band) and
dispatched while fewer than ``concurrency`` jobs are running.  A job whose
executor fails with a transient error is retried after a backoff delay and
re-enters the queue at the *front*, so in-flight work finishes before newer
jobs start.  The original exception is surfaced once retries are exhausted.

All state is mutated from the event loop thread only; no locks are needed.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, Set, TypeVar

import httpx

from core.errors import (
    ConfigError,
    CostLimitExceededError,
    NoProviderAvailableError,
    QueueClearedError,
    TransientProviderError,
)
from core.logging import logger

__all__ = [
    "RetryBackoff",
    "QueuedRequest",
    "RequestQueue",
    "is_retryable_error",
]

T = TypeVar("T")

_RETRYABLE_SIGNATURES = (
    "rate limit",
    "timeout",
    "network",
    "429",
    "500",
    "502",
    "503",
    "504",
)

# Structural failures: retrying cannot change the outcome
_NEVER_RETRY = (
    NoProviderAvailableError,
    CostLimitExceededError,
    QueueClearedError,
    ConfigError,
)


class RetryBackoff(str, Enum):
    """Backoff strategy between retry attempts."""
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class QueuedRequest(Generic[T]):
    """A caller's unit of work as seen by the queue."""
    request: T
    priority: float
    max_retries: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: float = field(default_factory=time.time)
    retry_count: int = 0


@dataclass
class _QueueTask:
    request: QueuedRequest
    execute: Callable[[Any], Awaitable[Any]]
    future: asyncio.Future


def is_retryable_error(error: BaseException) -> bool:
    """Return True if *error* looks transient (rate limit, timeout, network, 429/5xx)."""
    if isinstance(error, _NEVER_RETRY):
        return False
    if isinstance(error, TransientProviderError):
        return True
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    message = str(error).lower()
    return any(signature in message for signature in _RETRYABLE_SIGNATURES)


class RequestQueue:
    """Priority-ordered admission queue with retry and a concurrency cap."""

    def __init__(
        self,
        concurrency: int = 2,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        retry_backoff: RetryBackoff = RetryBackoff.EXPONENTIAL,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._concurrency = concurrency
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._retry_backoff = RetryBackoff(retry_backoff)
        self._sleep = sleep
        self._queue: List[_QueueTask] = []
        self._active_count = 0
        self._paused = False
        self._workers: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    async def enqueue(
        self,
        request: T,
        execute: Callable[[T], Awaitable[Any]],
        priority: float = 0,
    ) -> Any:
        """Queue *request* for *execute* and wait for the final result.

        Raises the executor's last exception if the job fails permanently,
        or :class:`QueueClearedError` if the queue is cleared first.
        """
        if priority < 0:
            raise ValueError("priority must be non-negative")

        future = asyncio.get_running_loop().create_future()
        task = _QueueTask(
            request=QueuedRequest(request=request, priority=priority, max_retries=self._max_retries),
            execute=execute,
            future=future,
        )

        # Insert before the first strictly lower priority job (higher first)
        insert_index = next(
            (i for i, queued in enumerate(self._queue) if queued.request.priority < priority),
            len(self._queue),
        )
        self._queue.insert(insert_index, task)

        self._process_queue()
        return await future

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False
        self._process_queue()

    def clear(self) -> int:
        """Fail every pending job with :class:`QueueClearedError`; running jobs are untouched."""
        pending, self._queue = self._queue, []
        for task in pending:
            self._settle(task, error=QueueClearedError())
        if pending:
            logger.info(f"Request queue cleared, {len(pending)} pending job(s) cancelled")
        return len(pending)

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def running_count(self) -> int:
        return self._active_count

    @property
    def is_paused(self) -> bool:
        return self._paused

    # ------------------------------------------------------------------
    def _process_queue(self) -> None:
        if self._paused:
            return

        loop = asyncio.get_running_loop()
        while self._active_count < self._concurrency and self._queue:
            task = self._queue.pop(0)
            self._active_count += 1
            worker = loop.create_task(self._execute_task(task))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    async def _execute_task(self, task: _QueueTask) -> None:
        try:
            try:
                result = await task.execute(task.request.request)
            except Exception as exc:
                if task.request.retry_count < task.request.max_retries and is_retryable_error(exc):
                    task.request.retry_count += 1
                    delay = self._calculate_retry_delay(task.request.retry_count)
                    logger.warning(
                        f"Job {task.request.id} failed (attempt {task.request.retry_count}/"
                        f"{task.request.max_retries + 1}), retrying in {delay:.2f}s: {exc}"
                    )
                    await self._sleep(delay)

                    # Re-add at the front, ahead of waiting jobs
                    self._queue.insert(0, task)
                else:
                    logger.error(
                        f"Job {task.request.id} failed permanently after "
                        f"{task.request.retry_count} retr{'y' if task.request.retry_count == 1 else 'ies'}: {exc}"
                    )
                    self._settle(task, error=exc)
            else:
                self._settle(task, result=result)
        except BaseException as exc:
            # Cancelled or interrupted mid-flight; the caller is still waiting
            self._settle(task, error=exc)
            raise
        finally:
            self._active_count -= 1
            self._process_queue()

    def _calculate_retry_delay(self, attempt: int) -> float:
        if self._retry_backoff == RetryBackoff.EXPONENTIAL:
            return self._retry_delay * (2 ** (attempt - 1))
        return self._retry_delay * attempt

    @staticmethod
    def _settle(task: _QueueTask, result: Any = None, error: Optional[BaseException] = None) -> None:
        # The caller may have stopped waiting (cancelled)
        if task.future.done():
            return
        if isinstance(error, asyncio.CancelledError):
            task.future.cancel()
        elif error is not None:
            task.future.set_exception(error)
        else:
            task.future.set_result(result)
