from namewire.annotations import (
    AnnotationExtractor,
    ProviderDeclaration,
    extract_dependencies,
    inject,
)
from namewire.exceptions import (
    AsyncProviderInSyncContextError,
    CircularDependencyError,
    InvalidDeclarationError,
    ModuleRedefinitionError,
    NamewireError,
    UnannotatedFunctionError,
    UnknownModuleError,
    UnknownProviderError,
)
from namewire.injector import Injector
from namewire.modules import Module, ModuleRegistry
from namewire.settings import NamewireSettings
from namewire.types import DeclarationKind, ResolutionState

__all__ = [
    "AnnotationExtractor",
    "AsyncProviderInSyncContextError",
    "CircularDependencyError",
    "DeclarationKind",
    "Injector",
    "InvalidDeclarationError",
    "Module",
    "ModuleRedefinitionError",
    "ModuleRegistry",
    "NamewireError",
    "NamewireSettings",
    "ProviderDeclaration",
    "ResolutionState",
    "UnannotatedFunctionError",
    "UnknownModuleError",
    "UnknownProviderError",
    "extract_dependencies",
    "inject",
]
