from __future__ import annotations

import types
from collections.abc import Callable
from typing import Any, TypeGuard

from pydantic_settings import BaseSettings


def is_pydantic_settings_subclass(candidate: object) -> TypeGuard[type[BaseSettings]]:
    """Return whether a declaration is a Pydantic settings model class.

    namewire uses this check so that settings classes declared as providers
    are built through a zero-argument factory: their fields are read from the
    environment, never resolved as dependency names.

    Args:
        candidate: Declaration being checked.

    Returns:
        ``True`` when ``candidate`` is a runtime class deriving from
        ``pydantic_settings.BaseSettings``; otherwise ``False``.

    """
    if not isinstance(candidate, type) or isinstance(candidate, types.GenericAlias):
        return False
    try:
        return issubclass(candidate, BaseSettings)
    except TypeError:
        return False


def settings_factory(settings_cls: type[BaseSettings], **overrides: Any) -> Callable[[], BaseSettings]:
    """Build a zero-dependency factory instantiating ``settings_cls``.

    ``overrides`` are passed to the settings constructor and win over values
    read from the environment.
    """
    if not is_pydantic_settings_subclass(settings_cls):
        msg = f"{settings_cls!r} is not a pydantic_settings.BaseSettings subclass"
        raise TypeError(msg)

    def _factory() -> BaseSettings:
        return settings_cls(**overrides)

    _factory.__qualname__ = f"settings_factory({settings_cls.__qualname__})"
    return _factory


__all__ = [
    "is_pydantic_settings_subclass",
    "settings_factory",
]
