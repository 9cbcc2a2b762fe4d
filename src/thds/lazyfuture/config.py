"""Typed, discoverable configuration for lazyfuture.

Every item is registered by its full dotted name, so all active configuration can be
listed with `show_all_config`. An item can be set:

- by environment variable, at import time: `thds.lazyfuture.strict_outcomes` may be set
  as `THDS_LAZYFUTURE_STRICT_OUTCOMES=1`;
- globally for the process, via `set_global`;
- for the current thread or async task only, via `with ITEM.set_local(value): ...`.

from thds.lazyfuture import config

STRICT = config.item("thds.lazyfuture.strict_outcomes", False, parse=config.tobool)

with STRICT.set_local(True):
    assert STRICT()
"""

import contextlib
import contextvars
import typing as ty
from os import getenv

T = ty.TypeVar("T")

_NOT_CONFIGURED: ty.Any = object()


class UnconfiguredError(ValueError):
    pass


class ConfigNameCollisionError(KeyError):
    pass


def _env_names(name: str) -> ty.Iterator[str]:
    yield name
    sanitized = name.replace("-", "_").replace(".", "_")
    yield sanitized
    yield sanitized.upper()


def _getenv(name: str) -> ty.Optional[str]:
    for env_name in _env_names(name):
        value = getenv(env_name)
        if value:
            return value
    return None


def tobool(value: ty.Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(value)


class ConfigItem(ty.Generic[T]):
    """Should only ever be constructed at module level."""

    def __init__(
        self,
        name: str,
        default: T = _NOT_CONFIGURED,
        *,
        parse: ty.Callable[[ty.Any], T] = lambda x: x,
        allow_env_var: bool = True,
    ):
        if name in _REGISTRY:
            raise ConfigNameCollisionError(f"Config item {name} has already been registered!")
        _REGISTRY[name] = self
        self.name = name
        self.parse = parse
        env_value = _getenv(name) if allow_env_var else None
        # the environment is only consulted once; use set_global afterwards.
        self.global_value = parse(env_value) if env_value is not None else default
        self._local: contextvars.ContextVar[T] = contextvars.ContextVar(
            f"config {name}", default=_NOT_CONFIGURED
        )

    def set_global(self, value: T) -> None:
        """Global to the current process."""
        self.global_value = self.parse(value)

    @contextlib.contextmanager
    def set_local(self, value: T) -> ty.Iterator[T]:
        """Local to the current thread or async task, for the duration of the with block."""
        parsed = self.parse(value)
        token = self._local.set(parsed)
        try:
            yield parsed
        finally:
            self._local.reset(token)

    def __call__(self) -> T:
        local = self._local.get()
        if local is not _NOT_CONFIGURED:
            return local
        if self.global_value is _NOT_CONFIGURED:
            raise UnconfiguredError(f"Config item '{self.name}' has not been configured!")
        return self.global_value

    def __repr__(self) -> str:
        return f"ConfigItem({self.name!r})"


_REGISTRY: ty.Dict[str, ConfigItem] = dict()


def item(
    name: str,
    default: T = _NOT_CONFIGURED,
    *,
    parse: ty.Callable[[ty.Any], T] = lambda x: x,
    allow_env_var: bool = True,
) -> ConfigItem[T]:
    return ConfigItem(name, default, parse=parse, allow_env_var=allow_env_var)


def config_by_name(name: str) -> ConfigItem:
    """Prefer accessing the ConfigItem object directly."""
    return _REGISTRY[name]


def set_global_defaults(config: ty.Mapping[str, ty.Any]) -> None:
    """Set many items at once, e.g. from a parsed TOML or JSON file.

    Nested dictionaries are flattened into dotted names, so
    `{"thds": {"lazyfuture": {"strict_outcomes": True}}}` is equivalent to
    `{"thds.lazyfuture.strict_outcomes": True}`.
    """
    for name, value in config.items():
        if isinstance(value, dict):
            set_global_defaults({f"{name}.{key}": val for key, val in value.items()})
            continue
        try:
            _REGISTRY[name].set_global(value)
        except KeyError as kerr:
            raise KeyError(
                f"Config item {name} is not registered. Please double-check your configuration."
            ) from kerr


def show_all_config() -> ty.Dict[str, ty.Any]:
    """Every configured item by name. Items with no value yet are left out."""
    shown = dict()
    for name, config_item in _REGISTRY.items():
        try:
            shown[name] = config_item()
        except UnconfiguredError:
            continue
    return shown
