from __future__ import annotations

import functools
import inspect
from collections.abc import Callable, Iterator
from typing import Any, cast

import pytest

from namewire.injector import Injector
from namewire.modules import ModuleRegistry

_NAMEWIRE_INJECTOR_ATTR = "_namewire_injector"
_NAMEWIRE_INJECTED_NAMES_ATTR = "__namewire_pytest_injected_names__"
MODULES_MARKER = "namewire_modules"
INJECT_MARKER = "namewire_inject"


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        f"{MODULES_MARKER}(*names): modules loaded into the namewire_injector fixture",
    )
    config.addinivalue_line(
        "markers",
        f"{INJECT_MARKER}(*names): provider names passed to the test as keyword arguments",
    )


@pytest.fixture()
def namewire_registry() -> ModuleRegistry:
    """Create a per-test module registry.

    Override this fixture to register the modules your tests load. It is
    function-scoped, so registrations never leak between tests.

    Returns:
        A new, empty ``ModuleRegistry``.

    """
    return ModuleRegistry()


@pytest.fixture()
def namewire_injector(
    request: pytest.FixtureRequest,
    namewire_registry: ModuleRegistry,
) -> Injector:
    """Create an injector over the modules named by ``@pytest.mark.namewire_modules``.

    Without the marker the injector has no providers.
    """
    module_names: list[str] = []
    for marker in request.node.iter_markers(MODULES_MARKER):
        module_names.extend(marker.args)
    return namewire_registry.create_injector(*module_names)


@pytest.fixture(autouse=True)
def _namewire_state(request: pytest.FixtureRequest) -> None:
    """Store the injector on the test node when the test asks for injected names."""
    node = cast("Any", request.node)
    function = getattr(node, "function", None)
    if not getattr(function, _NAMEWIRE_INJECTED_NAMES_ATTR, None):
        return
    setattr(node, _NAMEWIRE_INJECTOR_ATTR, request.getfixturevalue("namewire_injector"))


def _injected_names(obj: object) -> tuple[str, ...]:
    names: list[str] = []
    for mark in getattr(obj, "pytestmark", ()):
        if mark.name == INJECT_MARKER:
            names.extend(mark.args)
    return tuple(names)


def pytest_pycollect_makeitem(
    collector: Any,
    name: str,
    obj: object,
) -> Any | None:
    """Hide ``namewire_inject`` names from pytest fixture name matching.

    Pytest treats test function parameters as fixture names. This hook
    rewrites the signature of marked tests so the injected parameters are
    not looked up as fixtures.

    Returns:
        ``None`` to continue default collection flow.

    """
    if not callable(obj):
        return None
    if not collector.istestfunction(obj, name):
        return None

    names = _injected_names(obj)
    if not names:
        return None

    signature = inspect.signature(obj)
    obj_as_any = cast("Any", obj)
    obj_as_any.__dict__[_NAMEWIRE_INJECTED_NAMES_ATTR] = names
    obj_as_any.__signature__ = signature.replace(
        parameters=[param for param in signature.parameters.values() if param.name not in names],
    )
    return None


def _bind_injected(
    original: Callable[..., Any],
    injector: Injector,
    names: tuple[str, ...],
) -> Callable[..., Any]:
    caller = getattr(original, "__name__", None)

    if inspect.iscoroutinefunction(original):

        @functools.wraps(original)
        async def _async_injected(*args: Any, **kwargs: Any) -> Any:
            for name in names:
                if name not in kwargs:
                    kwargs[name] = await injector.aget(name, caller)
            return await original(*args, **kwargs)

        return _async_injected

    @functools.wraps(original)
    def _sync_injected(*args: Any, **kwargs: Any) -> Any:
        for name in names:
            if name not in kwargs:
                kwargs[name] = injector.get(name, caller)
        return original(*args, **kwargs)

    return _sync_injected


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> Iterator[None]:
    """Resolve ``namewire_inject`` names for the duration of the test call.

    If no injector is attached to the node, this hook is a no-op.

    Yields:
        Control back to pytest around test execution.

    """
    original_callable = cast("Callable[..., Any]", pyfuncitem.obj)
    names = cast(
        "tuple[str, ...] | None",
        getattr(original_callable, _NAMEWIRE_INJECTED_NAMES_ATTR, None),
    )
    injector = cast("Injector | None", getattr(pyfuncitem, _NAMEWIRE_INJECTOR_ATTR, None))
    if not names or injector is None:
        yield
        return

    pyfuncitem.obj = _bind_injected(original_callable, injector, names)
    try:
        yield
    finally:
        pyfuncitem.obj = original_callable
