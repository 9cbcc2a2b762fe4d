"""A lazy Future: a description of some work that does nothing until it is engaged.

Unlike concurrent.futures.Future or asyncio.Future, constructing one of these never
starts anything. The work is an `action` taking two callbacks, `fail` and `succeed`,
and it runs every time the Future is engaged - so a Future can be engaged any number
of times, each an independent execution.

```
users = Future.try_p(lambda: pool.submit(load_users))
report = (
    Future.gather2(users, Future.encase(load_config, "prod"))
    .map(lambda pair: build_report(*pair))
    .handle_with(lambda err: Future.of(EMPTY_REPORT))
)
# nothing has happened yet.
report.engage(print_error, print)
# or, from async code:
await report
```

Exceptions and engagement: an exception raised by an action is delivered to `fail` only
if that engagement has not already delivered an outcome. Once it has, the exception
came from downstream of that outcome (a later stage, or the caller's own callback) and
it propagates to whoever engaged the Future. Functions handed to combinators (mappers,
`flat_map` continuations, error handlers) are guarded where they are called, so their
exceptions become failures of that stage whether the Future completes synchronously
or on some other thread.
"""

import asyncio
import collections.abc
import concurrent.futures
import itertools
import threading
import typing as ty
from functools import partial, wraps

from typing_extensions import ParamSpec

from . import bridge, config, errors, log

A = ty.TypeVar("A")
B = ty.TypeVar("B")
K = ty.TypeVar("K")
L = ty.TypeVar("L")
L2 = ty.TypeVar("L2")
R = ty.TypeVar("R")
R1 = ty.TypeVar("R1")
R2 = ty.TypeVar("R2")
R3 = ty.TypeVar("R3")
R4 = ty.TypeVar("R4")
P = ParamSpec("P")

Fail = ty.Callable[[L], ty.Any]
Succeed = ty.Callable[[R], ty.Any]
Action = ty.Callable[[Fail[L], Succeed[R]], ty.Any]

STRICT_OUTCOMES = config.item("thds.lazyfuture.strict_outcomes", False, parse=config.tobool)
# when set, an action that delivers a second outcome raises instead of being forwarded.

logger = log.getLogger(__name__)


def _action_name(action: ty.Callable) -> str:
    return getattr(action, "__qualname__", None) or repr(action)


class _Engagement:
    """Remembers whether one engagement of an action has delivered an outcome yet."""

    def __init__(self, action: ty.Callable):
        self.action = action
        self.delivered = ""  # 'fail' or 'succeed', once one has been called

    def _deliver(self, outcome: str, callback: ty.Callable[[ty.Any], ty.Any], value: ty.Any) -> None:
        if not self.delivered:
            self.delivered = outcome
        elif STRICT_OUTCOMES():
            raise errors.MultipleOutcomesError(
                f"{_action_name(self.action)} called {outcome} after already calling {self.delivered}"
            )
        else:
            logger.warning(
                "Action delivered more than one outcome; forwarding it anyway",
                action=_action_name(self.action),
                first=self.delivered,
                outcome=outcome,
            )
        callback(value)

    def fail(self, callback: Fail, error: ty.Any) -> None:
        self._deliver("fail", callback, error)

    def succeed(self, callback: Succeed, result: ty.Any) -> None:
        self._deliver("succeed", callback, result)


def _continue_with(
    fn: ty.Callable[[A], B], fail: Fail, then: ty.Callable[[B], ty.Any]
) -> ty.Callable[[A], None]:
    """Calls `then(fn(value))`, failing instead if `fn` raises.

    Only `fn` is guarded; whatever `then` raises belongs to someone further down the chain.
    """

    def continuation(value: A) -> None:
        try:
            result = fn(value)
        except Exception as exc:
            fail(exc)
            return
        then(result)

    return continuation


class _Gathering:
    """Per-engagement state for gather2 and all_ordered.

    Results are stored by position, so completion order never affects the output. The
    first failure fails the gathered Future; anything after that is dropped. Siblings are
    not cancelled - there is no cancellation - they just go unheard.

    Outcomes may arrive from other threads, so the check-and-set happens under a lock,
    which is always released before calling out.
    """

    def __init__(self, size: int, fail: Fail, succeed: ty.Callable[[ty.List[ty.Any]], ty.Any]):
        self._results: ty.List[ty.Any] = [None] * size
        self._remaining = size
        self._settled = False
        self._lock = threading.Lock()
        self._fail = fail
        self._succeed = succeed

    def fail(self, position: int, error: ty.Any) -> None:
        with self._lock:
            first = not self._settled
            self._settled = True
        if first:
            self._fail(error)
        else:
            logger.debug("Ignoring failure; the gathered future has already settled", position=position)

    def succeed(self, position: int, result: ty.Any) -> None:
        with self._lock:
            self._results[position] = result
            self._remaining -= 1
            complete = self._remaining == 0 and not self._settled
            if complete:
                self._settled = True
        if complete:
            self._succeed(self._results)

    def engage(self, position: int, future: "Future") -> None:
        future.engage(partial(self.fail, position), partial(self.succeed, position))

    def engage_all(self, futures: ty.Sequence["Future"]) -> None:
        """Engage every Future in order. If a callback raises during one engagement, the
        rest are still engaged before the first such exception is re-raised.
        """
        raised: ty.Optional[Exception] = None
        for position, future in enumerate(futures):
            try:
                self.engage(position, future)
            except Exception as exc:
                if raised is None:
                    raised = exc
                else:
                    logger.exception("Exception while engaging a later future", position=position)
        if raised is not None:
            raise raised


def _concat(*groups: ty.Tuple[ty.Any, ...]) -> ty.Tuple[ty.Any, ...]:
    return tuple(itertools.chain.from_iterable(groups))


class Future(ty.Generic[L, R]):
    def __init__(self, action: Action[L, R]):
        self.action = action

    def __repr__(self) -> str:
        return f"Future({_action_name(self.action)})"

    def engage(self, fail: Fail[L], succeed: Succeed[R]) -> None:
        """Start execution of the Future.

        :param fail: called with the failure if the Future fails.
        :param succeed: called with the result if the Future succeeds.

        An exception raised by the action before it delivers an outcome is passed to
        `fail`. One raised after that propagates to the caller.
        """
        engagement = _Engagement(self.action)
        try:
            self.action(partial(engagement.fail, fail), partial(engagement.succeed, succeed))
            return
        except Exception as exc:
            if engagement.delivered:
                raise
            raised = exc
        engagement.fail(fail, raised)

    # bridges to eager evaluation. Each of these engages the Future immediately.

    def to_concurrent(self) -> "concurrent.futures.Future[R]":
        """Engage now, and return a concurrent.futures.Future that settles with the outcome.

        Failures that are not exceptions are raised as `errors.Rejection`.
        The returned future is already marked running, so it cannot be cancelled.
        """
        eager: concurrent.futures.Future[R] = concurrent.futures.Future()
        eager.set_running_or_notify_cancel()
        self.engage(partial(bridge.set_failure, eager), partial(bridge.set_result, eager))
        return eager

    def to_asyncio(self, loop: ty.Optional[asyncio.AbstractEventLoop] = None) -> "asyncio.Future[R]":
        """Engage now, and return an asyncio.Future on `loop` (default: the running loop).

        Outcomes delivered from other threads are handed to the loop thread-safely.
        """
        loop = loop or asyncio.get_running_loop()
        eager = loop.create_future()
        self.engage(
            partial(bridge.call_in_loop, loop, bridge.set_failure, eager),
            partial(bridge.call_in_loop, loop, bridge.set_result, eager),
        )
        return eager

    def __await__(self) -> ty.Generator[ty.Any, None, R]:
        return self.to_asyncio().__await__()

    # combinators. None of these engage anything until the returned Future is engaged.

    def map(self, mapper: ty.Callable[[R], R2]) -> "Future[L, R2]":
        """Transform the result synchronously."""
        return self.flat_map(lambda result: Future.of(mapper(result)))

    def flat_map(self, next_: ty.Callable[[R], "Future[L, R2]"]) -> "Future[L, R2]":
        """Run another Future built from this one's result. `next_` is never called on failure."""

        def flat_map_action(fail: Fail[L], succeed: Succeed[R2]) -> None:
            self.engage(fail, _continue_with(next_, fail, lambda future: future.engage(fail, succeed)))

        return Future(flat_map_action)

    def handle_with(self, handler: ty.Callable[[L], "Future[L, R2]"]) -> "Future[L, ty.Union[R, R2]]":
        """Recover from a failure of this Future (and only this Future) with a new Future.

        On success, the result passes through and `handler` is never called. Failures from
        stages added after this one, or from the repair Future itself, are not handled.
        """

        def handle_with_action(fail: Fail[L], succeed: Succeed[ty.Union[R, R2]]) -> None:
            self.engage(_continue_with(handler, fail, lambda repair: repair.engage(fail, succeed)), succeed)

        return Future(handle_with_action)

    def error_map(self, mapper: ty.Callable[[L], L2]) -> "Future[L2, R]":
        """Transform the failure, leaving success untouched."""

        def error_map_action(fail: Fail[L2], succeed: Succeed[R]) -> None:
            self.engage(_continue_with(mapper, fail, fail), succeed)

        return Future(error_map_action)

    # constructors

    @staticmethod
    def of(result: R) -> "Future[ty.Any, R]":
        """Always succeeds, synchronously, with `result`."""

        def of_action(_fail: Fail[ty.Any], succeed: Succeed[R]) -> None:
            succeed(result)

        return Future(of_action)

    @staticmethod
    def reject(error: L) -> "Future[L, ty.Any]":
        """Always fails, synchronously, with `error`."""

        def reject_action(fail: Fail[L], _succeed: Succeed[ty.Any]) -> None:
            fail(error)

        return Future(reject_action)

    @staticmethod
    def try_f(fn: ty.Callable[[], R]) -> "Future[Exception, R]":
        """Succeeds with whatever `fn()` returns, or fails with whatever it raises."""

        def try_f_action(fail: Fail[Exception], succeed: Succeed[R]) -> None:
            try:
                result = fn()
            except Exception as exc:
                fail(exc)
                return
            succeed(result)

        return Future(try_f_action)

    @staticmethod
    def try_p(fn: ty.Callable[[], ty.Any]) -> "Future[BaseException, ty.Any]":
        """Wrap a function returning something eager: a concurrent.futures.Future, an
        asyncio Future/Task, or a coroutine (which gets scheduled on the running loop).

        Fails if `fn` raises, or with whatever the eager thing eventually fails with.
        """

        def try_p_action(fail: Fail[BaseException], succeed: Succeed[ty.Any]) -> None:
            try:
                eager = fn()
            except Exception as exc:
                fail(exc)
                return
            bridge.follow(eager, fail, succeed)

        return Future(try_p_action)

    @staticmethod
    def encase(fn: ty.Callable[P, R], *args: P.args, **kwargs: P.kwargs) -> "Future[Exception, R]":
        """Same as try_f, with the arguments applied when the Future is engaged."""
        return Future.try_f(partial(fn, *args, **kwargs))

    # parallel composition

    @staticmethod
    def gather2(future1: "Future[L, R1]", future2: "Future[L, R2]") -> "Future[L, ty.Tuple[R1, R2]]":
        """Engage both Futures without waiting on either, and succeed with both results, in
        the order given. The first failure (by completion) fails the whole thing; the
        other Future is still engaged, and its outcome is ignored.
        """

        def gather2_action(fail: Fail[L], succeed: Succeed[ty.Tuple[R1, R2]]) -> None:
            gathering = _Gathering(2, fail, lambda results: succeed(tuple(results)))  # type: ignore[arg-type]
            gathering.engage_all((future1, future2))

        return Future(gather2_action)

    @staticmethod
    def gather3(
        future1: "Future[L, R1]", future2: "Future[L, R2]", future3: "Future[L, R3]"
    ) -> "Future[L, ty.Tuple[R1, R2, R3]]":
        """gather2(gather2(future1, future2), future3), flattened.

        Failures race pairwise: the inner pair against future3.
        """
        return Future.gather2(Future.gather2(future1, future2), future3).map(
            lambda nested: _concat(nested[0], (nested[1],))  # type: ignore[return-value]
        )

    @staticmethod
    def gather4(
        future1: "Future[L, R1]",
        future2: "Future[L, R2]",
        future3: "Future[L, R3]",
        future4: "Future[L, R4]",
    ) -> "Future[L, ty.Tuple[R1, R2, R3, R4]]":
        """gather2(gather2(future1, future2), gather2(future3, future4)), flattened.

        Failures race pairwise: the first failure within a pair fails that pair, and the
        first pair to fail fails the whole thing.
        """
        return Future.gather2(Future.gather2(future1, future2), Future.gather2(future3, future4)).map(
            lambda nested: _concat(*nested)  # type: ignore[return-value]
        )

    @ty.overload  # type: ignore[misc]
    @staticmethod
    def all(futures: ty.Mapping[K, "Future[L, R]"]) -> "Future[L, ty.Dict[K, R]]":
        ...  # pragma: no cover

    @ty.overload
    @staticmethod
    def all(futures: ty.Iterable["Future[L, R]"]) -> "Future[L, ty.List[R]]":
        ...  # pragma: no cover

    @staticmethod
    def all(futures):
        """A Mapping of Futures gathers into a dict with the same keys; anything else is
        treated as an ordered collection and gathers into a list.
        """
        if isinstance(futures, collections.abc.Mapping):
            return Future.all_keyed(futures)
        return Future.all_ordered(futures)

    @staticmethod
    def all_ordered(futures: ty.Iterable["Future[L, R]"]) -> "Future[L, ty.List[R]]":
        """Engage every Future immediately, in order, and succeed with a list of results in
        the same order. An empty collection succeeds with [] without engaging anything.
        """
        ordered = list(futures)  # so that the returned Future can be engaged more than once

        def all_action(fail: Fail[L], succeed: Succeed[ty.List[R]]) -> None:
            if not ordered:
                succeed([])
                return
            gathering = _Gathering(len(ordered), fail, succeed)
            logger.debug("Engaging futures", count=len(ordered))
            gathering.engage_all(ordered)

        return Future(all_action)

    @staticmethod
    def all_keyed(futures: ty.Mapping[K, "Future[L, R]"]) -> "Future[L, ty.Dict[K, R]]":
        """all_ordered over the values, in the mapping's iteration order, keyed back up."""
        keys = list(futures.keys())
        return Future.all_ordered([futures[key] for key in keys]).map(
            lambda results: dict(zip(keys, results))
        )


def encased(fn: ty.Callable[P, R]) -> ty.Callable[P, Future[Exception, R]]:
    """Turn a function into one that returns a Future of calling it, instead of calling it.

    Nothing runs until the returned Future is engaged.
    """

    @wraps(fn)
    def encased_(*args: P.args, **kwargs: P.kwargs) -> Future[Exception, R]:
        return Future.encase(fn, *args, **kwargs)

    return encased_
