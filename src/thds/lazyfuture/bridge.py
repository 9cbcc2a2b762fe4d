"""Helpers for crossing between lazy Futures and eager ones.

'Eager' here means anything that is already running by the time you hold it:
concurrent.futures.Future, asyncio.Future/Task, or a coroutine that we schedule onto the
running event loop.
"""

import asyncio
import concurrent.futures
import inspect
import typing as ty
from functools import partial

from . import errors, log

R = ty.TypeVar("R")

logger = log.getLogger(__name__)


class PFuture(ty.Protocol[R]):
    """The subset of concurrent.futures.Future and asyncio.Future that we follow."""

    def cancelled(self) -> bool:
        ...

    def exception(self) -> ty.Optional[BaseException]:
        ...

    def result(self) -> R:
        ...

    def add_done_callback(self, fn: ty.Callable[[ty.Any], ty.Any]) -> None:
        ...


def deliver_outcome(
    fail: ty.Callable[[ty.Any], ty.Any],
    succeed: ty.Callable[[R], ty.Any],
    done_fut: PFuture[R],
) -> None:
    """Meant to be partially applied and used as a done-callback."""
    if done_fut.cancelled():
        fail(concurrent.futures.CancelledError())
        return
    exc = done_fut.exception()
    if exc is not None:
        fail(exc)
    else:
        succeed(done_fut.result())


def follow(
    eager: ty.Any,
    fail: ty.Callable[[ty.Any], ty.Any],
    succeed: ty.Callable[[ty.Any], ty.Any],
) -> None:
    """Forward the eventual outcome of an eager future (or awaitable) to fail/succeed.

    Bare awaitables need somewhere to run, so they are scheduled on the running event loop;
    outside of a running loop this raises RuntimeError.
    """
    if not hasattr(eager, "add_done_callback"):
        if not inspect.isawaitable(eager):
            raise TypeError(f"Expected a future or an awaitable, got {type(eager).__name__}")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if asyncio.iscoroutine(eager):
                eager.close()  # otherwise it warns that it was never awaited
            raise
        eager = asyncio.ensure_future(eager, loop=loop)
        logger.debug("Scheduled awaitable on the running loop", task=eager)
    eager.add_done_callback(partial(deliver_outcome, fail, succeed))


def set_result(eager: ty.Any, result: ty.Any) -> None:
    # a settled (or cancelled) eager future keeps its first outcome.
    if not eager.done():
        eager.set_result(result)


def set_failure(eager: ty.Any, failure: ty.Any) -> None:
    if not eager.done():
        eager.set_exception(errors.as_exception(failure))


def _running_loop() -> ty.Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def call_in_loop(loop: asyncio.AbstractEventLoop, fn: ty.Callable[..., ty.Any], *args: ty.Any) -> None:
    """asyncio futures may only be touched from their loop's thread."""
    if _running_loop() is loop:
        fn(*args)
    else:
        loop.call_soon_threadsafe(fn, *args)
