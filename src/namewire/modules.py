from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from pydantic_settings import BaseSettings

from namewire.annotations import AnnotationExtractor, ProviderDeclaration
from namewire.exceptions import ModuleRedefinitionError, UnknownModuleError
from namewire.injector import Injector
from namewire.integrations.pydantic_settings import settings_factory
from namewire.settings import NamewireSettings
from namewire.types import Declaration, DeclarationKind, Factory

logger = logging.getLogger(__name__)


class Module:
    """A named group of provider declarations plus the modules it requires.

    Modules are created through :meth:`ModuleRegistry.register`; ``requires``
    is fixed at creation. Declaration methods return the module so calls can
    be chained.
    """

    __slots__ = ("_extractor", "_providers", "_run_blocks", "name", "requires")

    def __init__(
        self,
        name: str,
        requires: Sequence[str],
        *,
        extractor: AnnotationExtractor,
    ) -> None:
        self.name = name
        self.requires: tuple[str, ...] = tuple(requires)
        self._extractor = extractor
        self._providers: dict[str, ProviderDeclaration] = {}
        self._run_blocks: list[Declaration] = []

    @property
    def providers(self) -> Mapping[str, ProviderDeclaration]:
        return MappingProxyType(self._providers)

    @property
    def run_blocks(self) -> tuple[Declaration, ...]:
        return tuple(self._run_blocks)

    def declare(self, name: str, declaration: Declaration) -> Module:
        """Declare a provider; a later declaration with the same name replaces it.

        Raises:
            InvalidDeclarationError: If ``declaration`` is not a supported form.
            UnannotatedFunctionError: If a plain callable's parameter names
                cannot be determined.

        """
        provider = self._extractor.declaration(name, declaration, module=self.name)
        return self._store(provider)

    def factory(self, name: str, declaration: Declaration) -> Module:
        """Alias of :meth:`declare`."""
        return self.declare(name, declaration)

    def value(self, name: str, value: Any) -> Module:
        """Declare a provider that resolves to ``value`` itself."""
        return self._store(
            ProviderDeclaration(
                name=name,
                kind=DeclarationKind.VALUE,
                factory=_value_factory(value),
                dependencies=(),
                module=self.name,
            ),
        )

    def settings(self, name: str, settings_cls: type[BaseSettings], **overrides: Any) -> Module:
        """Declare a provider built from a pydantic settings class.

        The class is instantiated without dependencies, on first lookup, so
        it reads the environment at that moment.
        """
        return self._store(
            ProviderDeclaration(
                name=name,
                kind=DeclarationKind.SETTINGS,
                factory=settings_factory(settings_cls, **overrides),
                dependencies=(),
                module=self.name,
            ),
        )

    def run(self, declaration: Declaration) -> Module:
        """Queue a callable invoked with injection when an injector is created."""
        # Validate the form now so mistakes surface at load time
        self._extractor.extract(declaration)
        self._run_blocks.append(declaration)
        return self

    def _store(self, provider: ProviderDeclaration) -> Module:
        if provider.name in self._providers:
            logger.debug("Module '%s' redeclares provider '%s'", self.name, provider.name)
        self._providers[provider.name] = provider
        return self

    def __repr__(self) -> str:
        return f"Module(name={self.name!r}, requires={list(self.requires)!r})"


def _value_factory(value: Any) -> Factory:
    def _factory() -> Any:
        return value

    return _factory


class ModuleRegistry:
    """Own named modules and assemble provider mappings from them.

    Registries are explicit objects: create one at bootstrap and discard it
    (or call :meth:`clear`) in tests, so isolated registries can coexist.
    """

    def __init__(self, *, extractor: AnnotationExtractor | None = None) -> None:
        self._extractor = extractor or AnnotationExtractor()
        self._modules: dict[str, Module] = {}
        self._lock = threading.Lock()

    def register(self, name: str, requires: Sequence[str] | None = None) -> Module:
        """Create a module, or return the existing one.

        Args:
            name: Unique module name.
            requires: Names of modules whose providers this module builds on.
                Omit it to look up an existing module.

        Raises:
            ModuleRedefinitionError: If ``name`` exists and ``requires`` is
                given but differs from the stored list.

        """
        if isinstance(requires, str):
            msg = f"requires must be a sequence of module names, not the string {requires!r}"
            raise TypeError(msg)

        with self._lock:
            existing = self._modules.get(name)
            if existing is not None:
                if requires is not None and tuple(requires) != existing.requires:
                    raise ModuleRedefinitionError(name, existing.requires, requires)
                return existing

            module = Module(name, requires or (), extractor=self._extractor)
            self._modules[name] = module

        logger.debug("Registered module '%s' requiring %s", name, list(module.requires))
        return module

    def get(self, name: str) -> Module:
        """Return an existing module.

        Raises:
            UnknownModuleError: If ``name`` was never registered.

        """
        module = self._modules.get(name)
        if module is None:
            raise UnknownModuleError(name)
        return module

    def declare(self, module_name: str, provider_name: str, declaration: Declaration) -> Module:
        """Declare a provider on an existing module."""
        return self.get(module_name).declare(provider_name, declaration)

    def clear(self) -> None:
        with self._lock:
            self._modules.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._modules))

    def __len__(self) -> int:
        return len(self._modules)

    def load_order(self, *root_names: str) -> list[Module]:
        """Return the modules reachable from ``root_names``, required modules first.

        Every module appears once; module-level cycles are tolerated.

        Raises:
            UnknownModuleError: If a root or a required module does not exist.

        """
        ordered: list[Module] = []
        visited: set[str] = set()

        def visit(name: str, required_by: str | None) -> None:
            if name in visited:
                return
            visited.add(name)
            module = self._modules.get(name)
            if module is None:
                raise UnknownModuleError(name, required_by)
            for dependency in module.requires:
                visit(dependency, module.name)
            ordered.append(module)

        for root_name in root_names:
            visit(root_name, None)
        return ordered

    def build_registry(self, *root_names: str) -> dict[str, ProviderDeclaration]:
        """Flatten the providers of ``root_names`` and their required modules.

        Providers of later-loaded modules shadow earlier ones with the same name.
        """
        providers: dict[str, ProviderDeclaration] = {}
        for module in self.load_order(*root_names):
            for name, provider in module.providers.items():
                shadowed = providers.get(name)
                if shadowed is not None:
                    logger.debug(
                        "Provider '%s' from module '%s' shadows the one from module '%s'",
                        name,
                        module.name,
                        shadowed.module,
                    )
                providers[name] = provider
        return providers

    def collect_run_blocks(self, *root_names: str) -> list[Declaration]:
        """Return the run blocks of ``root_names`` and their required modules, in load order."""
        return [block for module in self.load_order(*root_names) for block in module.run_blocks]

    def create_injector(self, *root_names: str, strict_di: bool | None = None) -> Injector:
        """Build an injector over ``root_names`` and execute their run blocks.

        Args:
            *root_names: Modules to load, together with everything they require.
            strict_di: Reject implicitly annotated providers. Defaults to
                ``NamewireSettings().strict_di`` (``NAMEWIRE_STRICT_DI``).

        """
        if strict_di is None:
            strict_di = NamewireSettings().strict_di

        injector = Injector(
            self.build_registry(*root_names),
            strict_di=strict_di,
            extractor=self._extractor,
        )
        logger.info(
            "Created injector for modules %s with %d providers",
            list(root_names),
            len(injector.providers),
        )

        for block in self.collect_run_blocks(*root_names):
            injector.invoke(block)
        return injector

    def __repr__(self) -> str:
        return f"ModuleRegistry(modules={list(self._modules)!r})"


__all__ = ["Module", "ModuleRegistry"]
