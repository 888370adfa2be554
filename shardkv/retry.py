from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from anyio import sleep

from shardkv.typing import Awaitable, Callable, Mapping, R

logger = logging.getLogger(__name__)

#: A coroutine function called with the error that triggered a retry, or a
#: mapping of exception types to such functions.
FailureHook = (
    Callable[[BaseException], Awaitable[Any]]
    | Mapping[type[BaseException], Callable[[BaseException], Awaitable[Any]]]
)


async def _run_failure_hook(failure_hook: FailureHook | None, error: BaseException) -> None:
    if failure_hook is None:
        return
    if isinstance(failure_hook, Mapping):
        # the first matching entry wins so subclasses must be listed first
        for exc_type, hook in failure_hook.items():
            if isinstance(error, exc_type):
                await hook(error)
                return
    else:
        await failure_hook(error)


class RetryPolicy(ABC):
    """
    Abstract retry policy
    """

    def __init__(self, retries: int, retryable_exceptions: tuple[type[BaseException], ...]) -> None:
        """
        :param retries: number of times to retry if a :paramref:`retryable_exceptions`
         is encountered.
        :param retryable_exceptions: The exceptions to trigger a retry for
        """
        self.retryable_exceptions = retryable_exceptions
        self.retries = retries

    @abstractmethod
    async def delay(self, attempt_number: int) -> None:
        pass

    def will_retry(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retryable_exceptions)

    async def call_with_retries(
        self,
        func: Callable[[], Awaitable[R]],
        failure_hook: FailureHook | None = None,
    ) -> R:
        """
        :param func: a function returning the coroutine to await on every attempt
        :param failure_hook: called with every retryable error before the next attempt.
        :raises: the last retryable error once all attempts are exhausted
        """
        attempt = 0
        while True:
            await self.delay(attempt)
            try:
                return await func()
            except self.retryable_exceptions as e:
                if attempt >= self.retries:
                    raise
                attempt += 1
                logger.info("Retry attempt %d due to error: %s", attempt, e)
                await _run_failure_hook(failure_hook, e)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}<"
            f"retries={self.retries}, "
            f"retryable_exceptions={','.join(e.__name__ for e in self.retryable_exceptions)}"
            ">"
        )


class ConstantRetryPolicy(RetryPolicy):
    """
    Retry policy that pauses :paramref:`ConstantRetryPolicy.delay` seconds
    between attempts.
    """

    def __init__(
        self,
        retryable_exceptions: tuple[type[BaseException], ...],
        retries: int,
        delay: float,
    ) -> None:
        self.__delay = delay
        super().__init__(retries, retryable_exceptions)

    async def delay(self, attempt_number: int) -> None:
        if attempt_number > 0:
            await sleep(self.__delay)


class ExponentialBackoffRetryPolicy(RetryPolicy):
    """
    Retry policy that doubles the pause between attempts starting at
    :paramref:`ExponentialBackoffRetryPolicy.initial_delay` seconds.
    """

    def __init__(
        self,
        retryable_exceptions: tuple[type[BaseException], ...],
        retries: int,
        initial_delay: float,
    ) -> None:
        self.__initial_delay = initial_delay
        super().__init__(retries, retryable_exceptions)

    async def delay(self, attempt_number: int) -> None:
        if attempt_number > 0:
            await sleep(pow(2, attempt_number - 1) * self.__initial_delay)


class CompositeRetryPolicy(RetryPolicy):
    """
    Combines multiple retry policies, each keeping its own attempt budget
    for the errors it handles
    """

    def __init__(self, *retry_policies: RetryPolicy):
        self._retry_policies = list(retry_policies)
        super().__init__(
            sum(p.retries for p in self._retry_policies),
            tuple(e for p in self._retry_policies for e in p.retryable_exceptions),
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}<{','.join(str(p) for p in self._retry_policies)}>"

    async def delay(self, attempt_number: int) -> None:
        raise NotImplementedError()

    async def call_with_retries(
        self,
        func: Callable[[], Awaitable[R]],
        failure_hook: FailureHook | None = None,
    ) -> R:
        attempts = {id(policy): 0 for policy in self._retry_policies}
        while True:
            try:
                return await func()
            except self.retryable_exceptions as e:
                policy = next(
                    (
                        p
                        for p in self._retry_policies
                        if p.will_retry(e) and attempts[id(p)] < p.retries
                    ),
                    None,
                )
                if policy is None:
                    raise
                attempts[id(policy)] += 1
                logger.info("Retry attempt %d due to error: %s", attempts[id(policy)], e)
                await _run_failure_hook(failure_hook, e)
                await policy.delay(attempts[id(policy)])
