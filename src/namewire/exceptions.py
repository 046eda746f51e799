from __future__ import annotations

from collections.abc import Sequence

from namewire.defaults import CHAIN_SEPARATOR


class NamewireError(Exception):
    """Represent a base class for all namewire-specific failures.

    Catch this type when you want to handle any namewire error path without
    matching each concrete exception class individually.
    """


class ModuleRedefinitionError(NamewireError):
    """Signal that a module name was re-registered with different requirements.

    Raised by ``ModuleRegistry.register`` when ``requires`` is passed for a
    module that already exists and differs (order-sensitive) from the stored
    list. Registering again with the same list, or without a list, is a no-op.

    Typical fix is registering the module once and looking it up afterwards
    with ``registry.register(name)`` or ``registry.get(name)``.
    """

    def __init__(self, name: str, existing: Sequence[str], requested: Sequence[str]) -> None:
        self.name = name
        self.existing = tuple(existing)
        self.requested = tuple(requested)
        super().__init__(
            f"Module '{name}' is already registered with requires={list(self.existing)!r}, "
            f"cannot redefine it with requires={list(self.requested)!r}",
        )


class UnknownModuleError(NamewireError):
    """Signal a lookup of a module that was never registered.

    Raised by ``ModuleRegistry.get`` and while building a provider mapping
    when a module lists a required module that does not exist.
    """

    def __init__(self, name: str, required_by: str | None = None) -> None:
        self.name = name
        self.required_by = required_by
        msg = f"Module '{name}' is not available"
        if required_by is not None:
            msg += f" (required by module '{required_by}')"
        super().__init__(msg)


class InvalidDeclarationError(NamewireError):
    """Signal a provider declaration that matches none of the supported forms.

    Supported forms are a list/tuple of dependency names ending with a
    callable, a callable carrying ``__inject__``, or a plain callable.
    """


class UnannotatedFunctionError(NamewireError):
    """Signal that dependency names of a callable cannot be determined.

    Raised when a plain callable has no introspectable signature, declares
    parameters that cannot be supplied positionally, or when strict mode
    forbids implicit annotation.

    Typical fixes include declaring the provider in list form
    (``["db", "cache", make_service]``) or decorating it with ``@inject(...)``.
    """

    def __init__(self, target: object, reason: str) -> None:
        self.target = target
        self.reason = reason
        name = getattr(target, "__qualname__", None) or repr(target)
        super().__init__(f"Cannot determine dependencies of {name}: {reason}")


class UnknownProviderError(NamewireError):
    """Signal that a requested or transitively required provider is not declared.

    ``chain`` holds the failing name followed by its requesters, innermost
    first, e.g. ``("missing", "service", "app")``.
    """

    def __init__(self, name: str, chain: Sequence[str]) -> None:
        self.name = name
        self.chain = tuple(chain)
        super().__init__(f"Unknown provider: {CHAIN_SEPARATOR.join(self.chain)}")


class CircularDependencyError(NamewireError):
    """Signal a provider that transitively depends on itself.

    ``chain`` starts and ends with the same provider name, e.g.
    ``("a", "c", "b", "a")`` for ``a -> b -> c -> a``.
    """

    def __init__(self, name: str, chain: Sequence[str]) -> None:
        self.name = name
        self.chain = tuple(chain)
        super().__init__(f"Circular dependency found: {CHAIN_SEPARATOR.join(self.chain)}")


class AsyncProviderInSyncContextError(NamewireError):
    """Signal sync resolution of a provider that needs the event loop.

    Raised by ``Injector.get`` and ``Injector.invoke`` when the factory is
    asynchronous, and by ``Injector.get`` when the provider is being awaited
    by a task of the event loop running on the calling thread. Typical fix is
    switching to ``await injector.aget(...)``.
    """

    def __init__(self, name: str, chain: Sequence[str]) -> None:
        self.name = name
        self.chain = tuple(chain)
        super().__init__(
            f"Provider '{name}' needs asynchronous resolution and cannot be resolved synchronously: "
            f"{CHAIN_SEPARATOR.join(self.chain)}",
        )
