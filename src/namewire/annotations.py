"""Turn raw provider declarations into ordered dependency names.

Three declaration forms are understood, checked in this order:

1. ``["db", "cache", make_service]``: names listed ahead of the callable.
2. A callable carrying ``__inject__ = ("db", "cache")``, usually set with
   :func:`inject`.
3. A plain callable; its positional parameter names are read from
   ``inspect.signature`` without calling it.

Declarations are normalised once into :class:`ProviderDeclaration` so the
injector never re-inspects them while resolving.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from namewire.defaults import INJECT_ATTRIBUTE
from namewire.exceptions import InvalidDeclarationError, UnannotatedFunctionError
from namewire.integrations.pydantic_settings import is_pydantic_settings_subclass
from namewire.types import Declaration, DeclarationKind, Factory

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_POSITIONAL_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


@dataclass(frozen=True, slots=True)
class ProviderDeclaration:
    """A provider declaration normalised at declare time."""

    name: str
    kind: DeclarationKind
    factory: Factory
    dependencies: tuple[str, ...]
    module: str | None = None
    is_async: bool = False


def inject(*names: str) -> Callable[[F], F]:
    """Attach explicit dependency names to a callable.

    The names take precedence over the callable's own parameter names::

        @inject("db", "cache")
        def make_service(connection, store): ...

    Args:
        *names: Provider names, in the order they are passed to the callable.

    Returns:
        A decorator that stores ``names`` on the callable's ``__inject__``
        attribute and returns the callable unchanged.

    """
    for name in names:
        if not isinstance(name, str):
            msg = f"Dependency names must be strings, got {name!r}"
            raise InvalidDeclarationError(msg)

    def decorator(func: F) -> F:
        setattr(func, INJECT_ATTRIBUTE, tuple(names))
        return func

    return decorator


def is_async_factory(factory: Any) -> bool:
    """Check if a factory is a coroutine function or a callable whose call is one."""
    # Calling a class constructs an instance synchronously
    if isinstance(factory, type):
        return False

    # Handle callable instances (objects with __call__ that aren't functions/classes)
    if callable(factory) and not inspect.isfunction(factory) and not inspect.ismethod(factory):
        wrapped_factory = getattr(factory, "func", None)
        if wrapped_factory is not None and (
            inspect.isfunction(wrapped_factory) or inspect.ismethod(wrapped_factory)
        ):
            return inspect.iscoroutinefunction(wrapped_factory)
        call_method = getattr(factory, "__call__", None)  # noqa: B004
        if call_method is not None:  # pragma: no branch
            return inspect.iscoroutinefunction(call_method)

    return inspect.iscoroutinefunction(factory)


class AnnotationExtractor:
    """Extract ordered dependency names from provider declarations.

    Results for callables (``__inject__`` and implicit forms) are cached, so
    repeated extraction returns the identical tuple without inspecting the
    callable again. List-form names are read from the list on every call:
    lists are unhashable and may be edited between declarations.
    """

    def __init__(self) -> None:
        self._cache: dict[tuple[DeclarationKind, Any], tuple[str, ...]] = {}

    def extract(self, declaration: Declaration) -> tuple[tuple[str, ...], Factory]:
        """Return the dependency names and the callable of a declaration.

        Raises:
            InvalidDeclarationError: If the declaration is not a supported form.
            UnannotatedFunctionError: If a plain callable's parameter names
                cannot be determined.

        """
        names, factory, _ = self.classify(declaration)
        return names, factory

    def classify(
        self,
        declaration: Declaration,
    ) -> tuple[tuple[str, ...], Factory, DeclarationKind]:
        """Like :meth:`extract`, also reporting which form matched."""
        if isinstance(declaration, (list, tuple)):
            return self._extract_array(declaration), declaration[-1], DeclarationKind.ARRAY

        if not callable(declaration):
            msg = f"Provider declaration must be a callable or a list ending in one, got {declaration!r}"
            raise InvalidDeclarationError(msg)

        if getattr(declaration, INJECT_ATTRIBUTE, None) is not None:
            return self._extract_annotated(declaration), declaration, DeclarationKind.ANNOTATED

        if is_pydantic_settings_subclass(declaration):
            return (), declaration, DeclarationKind.SETTINGS

        return self._extract_implicit(declaration), declaration, DeclarationKind.IMPLICIT

    def declaration(
        self,
        name: str,
        declaration: Declaration,
        *,
        module: str | None = None,
    ) -> ProviderDeclaration:
        """Normalise a raw declaration into a :class:`ProviderDeclaration`."""
        dependencies, factory, kind = self.classify(declaration)
        return ProviderDeclaration(
            name=name,
            kind=kind,
            factory=factory,
            dependencies=dependencies,
            module=module,
            is_async=is_async_factory(factory),
        )

    def _extract_array(self, declaration: Sequence[Any]) -> tuple[str, ...]:
        if not declaration or not callable(declaration[-1]):
            msg = f"List-form declaration must end with a callable, got {declaration!r}"
            raise InvalidDeclarationError(msg)
        names = tuple(declaration[:-1])
        for name in names:
            if not isinstance(name, str):
                msg = f"List-form declaration names must be strings, got {name!r}"
                raise InvalidDeclarationError(msg)
        return names

    def _extract_annotated(self, factory: Factory) -> tuple[str, ...]:
        cached = self._cached(DeclarationKind.ANNOTATED, factory)
        if cached is not None:
            return cached

        raw = getattr(factory, INJECT_ATTRIBUTE)
        if isinstance(raw, str) or not isinstance(raw, Sequence):
            msg = f"{INJECT_ATTRIBUTE} must be a sequence of names, got {raw!r}"
            raise InvalidDeclarationError(msg)
        names = tuple(raw)
        for name in names:
            if not isinstance(name, str):
                msg = f"{INJECT_ATTRIBUTE} names must be strings, got {name!r}"
                raise InvalidDeclarationError(msg)

        self._store(DeclarationKind.ANNOTATED, factory, names)
        return names

    def _extract_implicit(self, factory: Factory) -> tuple[str, ...]:
        cached = self._cached(DeclarationKind.IMPLICIT, factory)
        if cached is not None:
            return cached

        try:
            sig = inspect.signature(factory)
        except (ValueError, TypeError) as e:
            raise UnannotatedFunctionError(factory, f"no introspectable signature ({e})") from e

        names: list[str] = []
        for param in sig.parameters.values():
            if param.kind in _POSITIONAL_KINDS:
                names.append(param.name)
            elif param.kind is inspect.Parameter.VAR_POSITIONAL:
                raise UnannotatedFunctionError(
                    factory,
                    f"variadic parameter '*{param.name}' has no dependency names",
                )
            elif param.kind is inspect.Parameter.KEYWORD_ONLY and param.default is param.empty:
                raise UnannotatedFunctionError(
                    factory,
                    f"keyword-only parameter '{param.name}' cannot be passed positionally",
                )

        result = tuple(names)
        logger.debug("Inferred dependencies %s from parameters of %r", result, factory)
        self._store(DeclarationKind.IMPLICIT, factory, result)
        return result

    def _cached(self, kind: DeclarationKind, factory: Factory) -> tuple[str, ...] | None:
        if not isinstance(factory, Hashable):
            return None
        return self._cache.get((kind, factory))

    def _store(self, kind: DeclarationKind, factory: Factory, names: tuple[str, ...]) -> None:
        if isinstance(factory, Hashable):
            self._cache[(kind, factory)] = names


_DEFAULT_EXTRACTOR = AnnotationExtractor()


def extract_dependencies(declaration: Declaration) -> tuple[tuple[str, ...], Factory]:
    """Return ``(names, callable)`` for a declaration using a shared cache."""
    return _DEFAULT_EXTRACTOR.extract(declaration)


__all__ = [
    "AnnotationExtractor",
    "ProviderDeclaration",
    "extract_dependencies",
    "inject",
    "is_async_factory",
]
