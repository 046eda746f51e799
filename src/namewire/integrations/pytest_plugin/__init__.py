from namewire.integrations.pytest_plugin.plugin import (
    INJECT_MARKER,
    MODULES_MARKER,
    _namewire_state,
    namewire_injector,
    namewire_registry,
    pytest_configure,
    pytest_pycollect_makeitem,
    pytest_pyfunc_call,
)

__all__ = [
    "INJECT_MARKER",
    "MODULES_MARKER",
    "_namewire_state",
    "namewire_injector",
    "namewire_registry",
    "pytest_configure",
    "pytest_pycollect_makeitem",
    "pytest_pyfunc_call",
]
