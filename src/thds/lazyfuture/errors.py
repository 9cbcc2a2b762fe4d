import typing as ty


class Rejection(Exception):
    """A Future failed with a value that is not itself an exception.

    Raised by the eager bridges (`to_concurrent`, `to_asyncio`, `await`), which can only
    carry exceptions. The original failure value is available as `.value`.
    """

    def __init__(self, value: ty.Any):
        super().__init__(value)
        self.value = value


class MultipleOutcomesError(RuntimeError):
    """An action delivered more than one outcome for a single engagement.

    Only raised when `thds.lazyfuture.strict_outcomes` is enabled; otherwise the extra
    outcome is logged and forwarded.
    """


def as_exception(failure: ty.Any) -> BaseException:
    if isinstance(failure, BaseException):
        return failure
    return Rejection(failure)
