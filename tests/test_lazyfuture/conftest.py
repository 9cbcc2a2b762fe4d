import typing as ty

import pytest

from thds.lazyfuture import Future


class Controlled:
    """A Future whose engagements are recorded so the test can settle them later, in any order."""

    def __init__(self) -> None:
        self.engagements: ty.List[ty.Tuple[ty.Callable, ty.Callable]] = list()
        self.future: Future = Future(lambda fail, succeed: self.engagements.append((fail, succeed)))

    @property
    def engaged(self) -> int:
        return len(self.engagements)

    def succeed(self, result: ty.Any, engagement: int = -1) -> None:
        self.engagements[engagement][1](result)

    def fail(self, error: ty.Any, engagement: int = -1) -> None:
        self.engagements[engagement][0](error)


@pytest.fixture
def controlled() -> ty.Callable[[], Controlled]:
    return Controlled
