from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any, TypeAlias, Union


class ResolutionState(str, Enum):
    """Lifecycle of a provider inside one injector."""

    UNRESOLVED = "unresolved"
    """The factory has not been invoked yet."""

    RESOLVING = "resolving"
    """The factory's dependencies are being resolved right now."""

    RESOLVED = "resolved"
    """The factory ran once and its result is cached for the injector lifetime."""


class DeclarationKind(str, Enum):
    """Which declaration form produced a provider's dependency names."""

    ARRAY = "array"
    """``["a", "b", factory]``: names listed ahead of the callable."""

    ANNOTATED = "annotated"
    """A callable with an ``__inject__`` sequence of names."""

    IMPLICIT = "implicit"
    """A plain callable whose positional parameter names are used."""

    VALUE = "value"
    """A pre-built value wrapped in a zero-dependency factory."""

    SETTINGS = "settings"
    """A pydantic settings class instantiated without dependencies."""


Factory: TypeAlias = Callable[..., Any]
"""Any callable invoked with resolved dependencies as positional arguments."""

Declaration: TypeAlias = Union[Sequence[Union[str, Factory]], Factory]
"""Raw provider declaration accepted by ``declare``."""
