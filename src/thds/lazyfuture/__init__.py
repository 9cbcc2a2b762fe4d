"""Lazy, composable Futures: describe the work now, decide when (and how often) it runs."""

from importlib.metadata import PackageNotFoundError, version

from . import bridge, config, errors, log  # noqa: F401
from .errors import MultipleOutcomesError, Rejection  # noqa: F401
from .future import Future, encased  # noqa: F401

try:
    __version__ = version(__name__)
except PackageNotFoundError:
    __version__ = ""
