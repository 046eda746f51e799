"""Tests for provider resolution."""

from __future__ import annotations

import itertools
import logging

import pytest

from namewire.annotations import AnnotationExtractor, inject
from namewire.exceptions import (
    AsyncProviderInSyncContextError,
    CircularDependencyError,
    UnannotatedFunctionError,
    UnknownProviderError,
)
from namewire.injector import Injector
from namewire.modules import ModuleRegistry
from namewire.resolution_path import build_chain, format_chain
from namewire.types import ResolutionState


class Thing:
    def __init__(self) -> None:
        self.created = True


class TestSingletons:
    def test_factory_runs_once(self, registry: ModuleRegistry) -> None:
        counter = itertools.count(1)
        calls: list[int] = []

        def make_counter():
            calls.append(next(counter))
            return object()

        registry.register("app").declare("thing", make_counter)
        injector = registry.create_injector("app")

        first = injector.get("thing")
        second = injector.get("thing")

        assert first is second
        assert calls == [1]

    def test_shared_dependency_built_once_across_branches(self, registry: ModuleRegistry) -> None:
        built: list[str] = []

        def make_db():
            built.append("db")
            return "db"

        module = registry.register("app")
        module.declare("db", make_db)
        module.declare("users", lambda db: ("users", db))
        module.declare("orders", lambda db: ("orders", db))
        module.declare("api", lambda users, orders: (users, orders))

        api = registry.create_injector("app").get("api")

        assert api == (("users", "db"), ("orders", "db"))
        assert built == ["db"]

    def test_injectors_do_not_share_caches(self, registry: ModuleRegistry) -> None:
        registry.register("app").declare("thing", Thing)

        first = registry.create_injector("app")
        second = registry.create_injector("app")

        assert first.get("thing") is not second.get("thing")

    def test_values_resolve_to_themselves(self, registry: ModuleRegistry) -> None:
        sentinel = object()
        registry.register("app").value("sentinel", sentinel)

        assert registry.create_injector("app").get("sentinel") is sentinel


class TestInjectorStates:
    def test_state_is_resolving_while_factory_runs(self) -> None:
        observed: list[ResolutionState] = []
        holder: dict[str, Injector] = {}

        def watched():
            observed.append(holder["injector"].state("watched"))
            return "done"

        extractor = AnnotationExtractor()
        injector = Injector({"watched": extractor.declaration("watched", watched)})
        holder["injector"] = injector

        assert injector.state("watched") is ResolutionState.UNRESOLVED
        assert injector.get("watched") == "done"
        assert observed == [ResolutionState.RESOLVING]
        assert injector.state("watched") is ResolutionState.RESOLVED

    def test_undeclared_names_are_unresolved(self) -> None:
        injector = Injector({})

        assert injector.state("nope") is ResolutionState.UNRESOLVED

    def test_format_chain(self) -> None:
        assert format_chain(build_chain("db", ("main", "service"))) == "db <- service <- main"


class TestResolutionOrder:
    def test_dependencies_resolve_left_to_right_depth_first(
        self,
        registry: ModuleRegistry,
    ) -> None:
        order: list[str] = []

        def record(name):
            def factory(*_deps):
                order.append(name)
                return name

            return factory

        module = registry.register("app")
        module.declare("A", ["A1", record("A")])
        module.declare("A1", ["A2", record("A1")])
        module.declare("A2", [record("A2")])
        module.declare("B", [record("B")])
        module.declare("root", ["A", "B", record("root")])

        registry.create_injector("app").get("root")

        assert order == ["A2", "A1", "A", "B", "root"]

    def test_arguments_are_positional_in_declared_order(self, registry: ModuleRegistry) -> None:
        module = registry.register("app")
        module.value("first", 1)
        module.value("second", 2)
        module.declare("pair", ["second", "first", lambda x, y: (x, y)])

        assert registry.create_injector("app").get("pair") == (2, 1)

    def test_class_providers(self, registry: ModuleRegistry) -> None:
        class Repository:
            def __init__(self, db) -> None:
                self.db = db

        module = registry.register("app")
        module.value("db", "sqlite")
        module.declare("repository", Repository)

        repository = registry.create_injector("app").get("repository")

        assert isinstance(repository, Repository)
        assert repository.db == "sqlite"

    def test_annotated_callable(self, registry: ModuleRegistry) -> None:
        @inject("db")
        def build(connection):
            return ("built", connection)

        module = registry.register("app")
        module.value("db", "conn")
        module.declare("service", build)

        assert registry.create_injector("app").get("service") == ("built", "conn")


class TestCircularDependencies:
    def test_three_node_cycle_chain(self, registry: ModuleRegistry) -> None:
        module = registry.register("app")
        module.declare("A", ["B", lambda b: b])
        module.declare("B", ["C", lambda c: c])
        module.declare("C", ["A", lambda a: a])

        with pytest.raises(CircularDependencyError) as exc_info:
            registry.create_injector("app").get("A")

        assert exc_info.value.name == "A"
        assert exc_info.value.chain == ("A", "C", "B", "A")
        assert str(exc_info.value) == "Circular dependency found: A <- C <- B <- A"

    def test_self_dependency(self, registry: ModuleRegistry) -> None:
        registry.register("app").declare("A", ["A", lambda a: a])

        with pytest.raises(CircularDependencyError, match="A <- A"):
            registry.create_injector("app").get("A")

    def test_cycle_includes_caller(self, registry: ModuleRegistry) -> None:
        module = registry.register("app")
        module.declare("A", ["B", lambda b: b])
        module.declare("B", ["A", lambda a: a])

        with pytest.raises(CircularDependencyError) as exc_info:
            registry.create_injector("app").get("A", "main")

        assert exc_info.value.chain == ("A", "B", "A", "main")

    def test_cycle_is_reported_again_on_retry(self, registry: ModuleRegistry) -> None:
        module = registry.register("app")
        module.declare("A", ["B", lambda b: b])
        module.declare("B", ["A", lambda a: a])
        injector = registry.create_injector("app")

        for _ in range(2):
            with pytest.raises(CircularDependencyError) as exc_info:
                injector.get("A")
            assert exc_info.value.chain == ("A", "B", "A")

        assert injector.state("A") is ResolutionState.UNRESOLVED
        assert injector.state("B") is ResolutionState.UNRESOLVED


class TestUnknownProviders:
    def test_unknown_with_caller(self, registry: ModuleRegistry) -> None:
        injector = registry.create_injector()

        with pytest.raises(UnknownProviderError) as exc_info:
            injector.get("Missing", "Caller")

        assert "Missing <- Caller" in str(exc_info.value)
        assert exc_info.value.chain == ("Missing", "Caller")

    def test_unknown_without_caller(self, registry: ModuleRegistry) -> None:
        with pytest.raises(UnknownProviderError) as exc_info:
            registry.create_injector().get("Missing")

        assert str(exc_info.value) == "Unknown provider: Missing"

    def test_transitive_unknown_reports_full_path(self, registry: ModuleRegistry) -> None:
        module = registry.register("app")
        module.declare("service", ["repository", lambda repository: repository])
        module.declare("repository", ["db", lambda db: db])

        with pytest.raises(UnknownProviderError) as exc_info:
            registry.create_injector("app").get("service", "main")

        assert exc_info.value.name == "db"
        assert exc_info.value.chain == ("db", "repository", "service", "main")

    def test_partial_resolution_stays_cached(self, registry: ModuleRegistry) -> None:
        built: list[str] = []
        module = registry.register("app")
        module.declare("ok", lambda: built.append("ok") or "ok")
        module.declare("broken", ["ok", "missing", lambda ok, missing: (ok, missing)])
        injector = registry.create_injector("app")

        with pytest.raises(UnknownProviderError):
            injector.get("broken")

        assert injector.state("ok") is ResolutionState.RESOLVED
        assert injector.state("broken") is ResolutionState.UNRESOLVED
        assert injector.get("ok") == "ok"
        assert built == ["ok"]

    def test_has(self, registry: ModuleRegistry) -> None:
        registry.register("app").value("a", 1)
        injector = registry.create_injector("app")

        assert injector.has("a")
        assert not injector.has("b")


class TestFactoryErrors:
    def test_factory_exception_propagates_unchanged(self, registry: ModuleRegistry) -> None:
        class BoomError(Exception):
            pass

        def explode():
            raise BoomError

        registry.register("app").declare("boom", explode)
        injector = registry.create_injector("app")

        with pytest.raises(BoomError):
            injector.get("boom")

        assert injector.state("boom") is ResolutionState.UNRESOLVED

    def test_failed_factory_can_be_retried(self, registry: ModuleRegistry) -> None:
        attempts: list[int] = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                msg = "first call fails"
                raise RuntimeError(msg)
            return "ok"

        registry.register("app").declare("flaky", flaky)
        injector = registry.create_injector("app")

        with pytest.raises(RuntimeError):
            injector.get("flaky")

        assert injector.get("flaky") == "ok"
        assert injector.get("flaky") == "ok"
        assert len(attempts) == 2

    def test_async_factory_in_sync_get(self, registry: ModuleRegistry) -> None:
        async def connect():
            return "conn"

        module = registry.register("app")
        module.declare("db", connect)
        module.declare("service", lambda db: db)

        with pytest.raises(AsyncProviderInSyncContextError) as exc_info:
            registry.create_injector("app").get("service")

        assert exc_info.value.name == "db"
        assert exc_info.value.chain == ("db", "service")


class TestNestedLookups:
    def test_factory_can_use_injector_for_lazy_lookup(self, registry: ModuleRegistry) -> None:
        holder: dict[str, Injector] = {}
        module = registry.register("app")
        module.value("db", "conn")
        module.declare("lazy", lambda: holder["injector"].get("db", "ignored"))

        injector = registry.create_injector("app")
        holder["injector"] = injector

        assert injector.get("lazy") == "conn"

    def test_nested_lookup_errors_carry_outer_path(self, registry: ModuleRegistry) -> None:
        holder: dict[str, Injector] = {}
        module = registry.register("app")
        module.declare("lazy", lambda: holder["injector"].get("missing", "ignored"))
        module.declare("root", ["lazy", lambda lazy: lazy])

        injector = registry.create_injector("app")
        holder["injector"] = injector

        with pytest.raises(UnknownProviderError) as exc_info:
            injector.get("root", "main")

        assert exc_info.value.chain == ("missing", "lazy", "root", "main")

    def test_nested_cycle_through_injector(self, registry: ModuleRegistry) -> None:
        holder: dict[str, Injector] = {}
        registry.register("app").declare("loop", lambda: holder["injector"].get("loop"))

        injector = registry.create_injector("app")
        holder["injector"] = injector

        with pytest.raises(CircularDependencyError) as exc_info:
            injector.get("loop")

        assert exc_info.value.chain == ("loop", "loop")

    def test_other_injector_starts_a_fresh_path(self, registry: ModuleRegistry) -> None:
        registry.register("other")
        other = registry.create_injector("other")
        registry.register("app").declare("bridge", lambda: other.get("missing", "bridge"))

        with pytest.raises(UnknownProviderError) as exc_info:
            registry.create_injector("app").get("bridge")

        assert exc_info.value.chain == ("missing", "bridge")


class TestInvoke:
    def test_invoke_resolves_dependencies(self, registry: ModuleRegistry) -> None:
        registry.register("app").value("a", 1).value("b", 2)
        injector = registry.create_injector("app")

        assert injector.invoke(lambda a, b: a + b) == 3

    def test_invoke_prefers_locals(self, registry: ModuleRegistry) -> None:
        registry.register("app").value("a", 1).value("b", 2)
        injector = registry.create_injector("app")

        assert injector.invoke(["a", "b", lambda x, y: (x, y)], {"b": 20}) == (1, 20)

    def test_invoke_does_not_cache(self, registry: ModuleRegistry) -> None:
        injector = registry.create_injector()

        assert injector.invoke(Thing) is not injector.invoke(Thing)

    def test_invoke_unknown_reports_caller(self, registry: ModuleRegistry) -> None:
        injector = registry.create_injector()

        with pytest.raises(UnknownProviderError) as exc_info:
            injector.invoke(lambda missing: missing, caller="handler")

        assert exc_info.value.chain == ("missing", "handler")

    def test_invoke_async_callable_fails(self, registry: ModuleRegistry) -> None:
        async def handler():
            return None

        with pytest.raises(AsyncProviderInSyncContextError):
            registry.create_injector().invoke(handler)

    def test_annotate(self, registry: ModuleRegistry) -> None:
        injector = registry.create_injector()

        assert injector.annotate(lambda db, cache: None) == ("db", "cache")
        assert injector.annotate(["x", lambda db: None]) == ("x",)


class TestStrictMode:
    def test_strict_mode_rejects_implicit_providers(self, registry: ModuleRegistry) -> None:
        registry.register("app").value("db", 1).declare("service", lambda db: db)
        injector = registry.create_injector("app", strict_di=True)

        with pytest.raises(UnannotatedFunctionError, match="strict mode"):
            injector.get("service")

    def test_strict_mode_accepts_explicit_forms(self, registry: ModuleRegistry) -> None:
        module = registry.register("app").value("db", 1)
        module.declare("listed", ["db", lambda db: db])
        module.declare("annotated", inject("db")(lambda connection: connection))
        injector = registry.create_injector("app", strict_di=True)

        assert injector.get("listed") == 1
        assert injector.get("annotated") == 1
        assert injector.strict_di is True

    def test_strict_mode_applies_to_invoke_and_annotate(self, registry: ModuleRegistry) -> None:
        injector = registry.create_injector(strict_di=True)

        with pytest.raises(UnannotatedFunctionError):
            injector.invoke(lambda: None)
        with pytest.raises(UnannotatedFunctionError):
            injector.annotate(lambda db: None)

    def test_strict_mode_from_environment(
        self,
        registry: ModuleRegistry,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("NAMEWIRE_STRICT_DI", "true")

        assert registry.create_injector().strict_di is True
        assert registry.create_injector(strict_di=False).strict_di is False


class TestRunBlocks:
    def test_run_blocks_execute_in_load_order(self, registry: ModuleRegistry) -> None:
        seen: list[tuple[str, object]] = []
        registry.register("base").value("config", "cfg").run(
            lambda config: seen.append(("base", config)),
        )
        registry.register("app", ["base"]).run(["config", lambda c: seen.append(("app", c))])

        registry.create_injector("app")

        assert seen == [("base", "cfg"), ("app", "cfg")]

    def test_run_block_errors_propagate(self, registry: ModuleRegistry) -> None:
        registry.register("app").run(lambda missing: missing)

        with pytest.raises(UnknownProviderError, match="Unknown provider: missing"):
            registry.create_injector("app")


class TestLogging:
    def test_resolution_is_logged(
        self,
        registry: ModuleRegistry,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        registry.register("app").value("db", 1).declare("service", lambda db: db)

        with caplog.at_level(logging.DEBUG, logger="namewire"):
            registry.create_injector("app").get("service", "main")

        assert "Created injector for modules ['app'] with 2 providers" in caplog.text
        assert "Resolved provider db <- service <- main" in caplog.text

    def test_repr(self, registry: ModuleRegistry) -> None:
        registry.register("app").value("db", 1)
        injector = registry.create_injector("app")
        injector.get("db")

        assert repr(injector) == "Injector(providers=1, resolved=1)"
