from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from namewire.annotations import AnnotationExtractor, ProviderDeclaration, is_async_factory
from namewire.defaults import DEFAULT_STRICT_DI
from namewire.exceptions import (
    AsyncProviderInSyncContextError,
    CircularDependencyError,
    UnannotatedFunctionError,
    UnknownProviderError,
)
from namewire.resolution_path import (
    build_chain,
    format_chain,
    get_resolution_path,
    resolution_frame,
    start_path,
)
from namewire.types import Declaration, DeclarationKind, Factory, ResolutionState

logger = logging.getLogger(__name__)


class _InFlight:
    """A provider being built by one thread or task.

    Lookups from other threads and tasks wait on it: threads block on an
    event, tasks await a future completed on their own loop.
    """

    __slots__ = ("_done", "_futures", "_lock", "is_async", "thread_id")

    def __init__(self, *, is_async: bool) -> None:
        self.thread_id = threading.get_ident()
        self.is_async = is_async
        self._done = threading.Event()
        self._futures: list[asyncio.Future[None]] = []
        self._lock = threading.Lock()

    def wait(self) -> None:
        self._done.wait()

    async def wait_async(self) -> None:
        with self._lock:
            if self._done.is_set():
                return
            future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._futures.append(future)
        await future

    def release(self) -> None:
        with self._lock:
            self._done.set()
            futures, self._futures = self._futures, []
        for future in futures:
            loop = future.get_loop()
            if not future.done() and not loop.is_closed():
                loop.call_soon_threadsafe(_complete, future)


def _complete(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


class Injector:
    """Resolve named providers into singleton instances.

    Every provider's factory runs at most once per injector; its result is
    cached and returned for every later lookup. Injectors never share caches.

    First-time resolution is serialized per provider name across threads and
    asyncio tasks, for ``get`` and ``aget`` alike: a lookup of a provider that
    another thread or task is building waits for that result.

    Examples:
        .. code-block:: python

            registry = ModuleRegistry()
            registry.register("app").declare("greeting", ["name", lambda n: f"hi {n}"])
            registry.get("app").value("name", "bob")

            injector = registry.create_injector("app")
            injector.get("greeting")  # "hi bob"

    """

    __slots__ = (
        "_extractor",
        "_in_flight",
        "_instances",
        "_lock",
        "_providers",
        "_states",
        "_strict_di",
    )

    def __init__(
        self,
        providers: Mapping[str, ProviderDeclaration],
        *,
        strict_di: bool = DEFAULT_STRICT_DI,
        extractor: AnnotationExtractor | None = None,
    ) -> None:
        """Initialize an injector over a flattened provider mapping.

        Args:
            providers: Provider name to normalised declaration, usually built by
                ``ModuleRegistry.build_registry``. The mapping is copied.
            strict_di: Reject providers whose dependencies are only implied by
                parameter names.
            extractor: Annotation extractor used by :meth:`invoke` and
                :meth:`annotate`.

        """
        self._providers: dict[str, ProviderDeclaration] = dict(providers)
        self._strict_di = strict_di
        self._extractor = extractor or AnnotationExtractor()

        self._instances: dict[str, Any] = {}
        self._states: dict[str, ResolutionState] = {}
        # One entry per RESOLVING provider, owned by the thread or task building it
        self._in_flight: dict[str, _InFlight] = {}

        # Guards state transitions only; factories run outside of it
        self._lock = threading.Lock()

    @property
    def providers(self) -> Mapping[str, ProviderDeclaration]:
        return MappingProxyType(self._providers)

    @property
    def strict_di(self) -> bool:
        return self._strict_di

    def has(self, name: str) -> bool:
        """Return whether a provider named ``name`` is declared."""
        return name in self._providers

    def state(self, name: str) -> ResolutionState:
        """Return the resolution state of ``name``; undeclared names are unresolved."""
        return self._states.get(name, ResolutionState.UNRESOLVED)

    def get(self, name: str, caller: str | None = None) -> Any:
        """Resolve a provider by name, building its dependencies first.

        Args:
            name: The provider to resolve.
            caller: Optional name of the external requester, reported as the
                last link of error chains. Ignored for nested lookups made by
                factories while a resolution is running.

        Raises:
            UnknownProviderError: If ``name`` or one of its transitive
                dependencies is not declared.
            CircularDependencyError: If ``name`` transitively depends on itself.
            AsyncProviderInSyncContextError: If a required factory is async.

        """
        # Fast path: singletons are never re-evaluated
        if self._states.get(name) is ResolutionState.RESOLVED:
            return self._instances[name]

        path = get_resolution_path(self)
        if path is None:
            path = start_path(caller)
        return self._resolve(name, path)

    async def aget(self, name: str, caller: str | None = None) -> Any:
        """Asynchronously resolve a provider by name.

        Async factories are awaited before the provider is marked resolved.
        Lookups made by factories during a resolution, including from child
        tasks they spawn, join the running resolution path.

        Raises:
            UnknownProviderError: If ``name`` or one of its transitive
                dependencies is not declared.
            CircularDependencyError: If ``name`` transitively depends on itself.

        """
        if self._states.get(name) is ResolutionState.RESOLVED:
            return self._instances[name]

        path = get_resolution_path(self)
        if path is None:
            path = start_path(caller)
        return await self._aresolve(name, path)

    def invoke(
        self,
        declaration: Declaration,
        locals: Mapping[str, Any] | None = None,  # noqa: A002
        *,
        caller: str | None = None,
    ) -> Any:
        """Call any declaration with its dependencies resolved.

        ``locals`` supply values by name ahead of declared providers; they are
        passed only to this call and never cached. The result of the call is
        not cached either.
        """
        dependencies, factory = self._annotate(declaration)
        if is_async_factory(factory):
            target = _callable_name(factory)
            path = get_resolution_path(self) or start_path(caller)
            raise AsyncProviderInSyncContextError(target, build_chain(target, path))

        args = [
            locals[dependency] if locals and dependency in locals else self.get(dependency, caller)
            for dependency in dependencies
        ]
        return factory(*args)

    async def ainvoke(
        self,
        declaration: Declaration,
        locals: Mapping[str, Any] | None = None,  # noqa: A002
        *,
        caller: str | None = None,
    ) -> Any:
        """Asynchronous :meth:`invoke`; awaits async callables."""
        dependencies, factory = self._annotate(declaration)
        args = []
        for dependency in dependencies:
            if locals and dependency in locals:
                args.append(locals[dependency])
            else:
                args.append(await self.aget(dependency, caller))

        if is_async_factory(factory):
            return await factory(*args)
        return factory(*args)

    def annotate(self, declaration: Declaration) -> tuple[str, ...]:
        """Return the dependency names this injector would pass to a declaration."""
        dependencies, _ = self._annotate(declaration)
        return dependencies

    def _annotate(self, declaration: Declaration) -> tuple[tuple[str, ...], Factory]:
        dependencies, factory, kind = self._extractor.classify(declaration)
        self._check_strict(kind, factory)
        return dependencies, factory

    def _check_strict(self, kind: DeclarationKind, factory: Factory) -> None:
        if self._strict_di and kind is DeclarationKind.IMPLICIT:
            raise UnannotatedFunctionError(
                factory,
                "strict mode requires explicit dependency names",
            )

    def _begin(
        self,
        name: str,
        path: tuple[str, ...],
        *,
        is_async: bool,
    ) -> ProviderDeclaration | _InFlight | None:
        """Validate a lookup and claim ``name`` for the current thread or task.

        Returns ``None`` when the value is cached, the declaration when the
        caller now owns the resolution, or the in-flight record of another
        owner to wait on.
        """
        with self._lock:
            state = self._states.get(name, ResolutionState.UNRESOLVED)
            if state is ResolutionState.RESOLVED:
                return None
            if state is ResolutionState.RESOLVING:
                if name in path:
                    raise CircularDependencyError(name, build_chain(name, path))
                flight = self._in_flight[name]
                self._check_wait(name, path, flight, is_async=is_async)
                return flight

            declaration = self._providers.get(name)
            if declaration is None:
                raise UnknownProviderError(name, build_chain(name, path))
            self._check_strict(declaration.kind, declaration.factory)

            self._states[name] = ResolutionState.RESOLVING
            self._in_flight[name] = _InFlight(is_async=is_async)
            return declaration

    def _check_wait(
        self,
        name: str,
        path: tuple[str, ...],
        flight: _InFlight,
        *,
        is_async: bool,
    ) -> None:
        """Raise instead of waiting on ``flight`` when the wait could never end."""
        if not is_async and flight.thread_id == threading.get_ident():
            # The owner is suspended on this very thread
            chain = build_chain(name, path)
            if flight.is_async:
                raise AsyncProviderInSyncContextError(name, chain)
            raise CircularDependencyError(name, chain)

        cycle = self._find_cycle(name, path)
        if cycle is not None:
            repeated, route = cycle
            raise CircularDependencyError(repeated, build_chain(repeated, route))

    def _find_cycle(
        self,
        name: str,
        path: tuple[str, ...],
    ) -> tuple[str, tuple[str, ...]] | None:
        """Return the provider on ``path`` that ``name`` would request again, with its route.

        Two owners waiting on each other's providers form a cycle split
        across threads or tasks; it is found through declared dependencies.
        """
        active = set(path)
        seen: set[str] = set()

        def visit(current: str, route: tuple[str, ...]) -> tuple[str, tuple[str, ...]] | None:
            if current in active:
                return current, route
            if current in seen or self._states.get(current) is ResolutionState.RESOLVED:
                return None
            seen.add(current)
            declaration = self._providers.get(current)
            if declaration is None:
                return None
            for dependency in declaration.dependencies:
                found = visit(dependency, (*route, current))
                if found is not None:
                    return found
            return None

        return visit(name, path)

    def _finish(self, name: str, instance: Any, path: tuple[str, ...]) -> Any:
        with self._lock:
            self._instances[name] = instance
            self._states[name] = ResolutionState.RESOLVED
            flight = self._in_flight.pop(name)
        flight.release()
        logger.debug("Resolved provider %s", format_chain(build_chain(name, path)))
        return instance

    def _abandon(self, name: str) -> None:
        # The failing branch goes back to unresolved; siblings stay cached
        with self._lock:
            self._states.pop(name, None)
            flight = self._in_flight.pop(name, None)
        if flight is not None:
            flight.release()

    def _resolve(self, name: str, path: tuple[str, ...]) -> Any:
        claimed = self._begin(name, path, is_async=False)
        while isinstance(claimed, _InFlight):
            claimed.wait()
            claimed = self._begin(name, path, is_async=False)
        if claimed is None:
            return self._instances[name]

        declaration = claimed
        inner_path = (*path, name)
        try:
            if declaration.is_async:
                raise AsyncProviderInSyncContextError(name, build_chain(name, path))
            args = [self._resolve(dependency, inner_path) for dependency in declaration.dependencies]
            with resolution_frame(self, inner_path):
                instance = declaration.factory(*args)
        except BaseException:
            self._abandon(name)
            raise

        return self._finish(name, instance, path)

    async def _aresolve(self, name: str, path: tuple[str, ...]) -> Any:
        claimed = self._begin(name, path, is_async=True)
        while isinstance(claimed, _InFlight):
            await claimed.wait_async()
            claimed = self._begin(name, path, is_async=True)
        if claimed is None:
            return self._instances[name]

        declaration = claimed
        inner_path = (*path, name)
        try:
            args = [
                await self._aresolve(dependency, inner_path)
                for dependency in declaration.dependencies
            ]
            with resolution_frame(self, inner_path):
                if declaration.is_async:
                    instance = await declaration.factory(*args)
                else:
                    instance = declaration.factory(*args)
        except BaseException:
            self._abandon(name)
            raise

        return self._finish(name, instance, path)

    def __repr__(self) -> str:
        resolved = sum(state is ResolutionState.RESOLVED for state in self._states.values())
        return f"Injector(providers={len(self._providers)}, resolved={resolved})"


def _callable_name(factory: Factory) -> str:
    return getattr(factory, "__qualname__", None) or repr(factory)


__all__ = ["Injector"]
