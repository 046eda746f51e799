"""Shared pytest fixtures for namewire tests."""

import pytest

from namewire.annotations import AnnotationExtractor
from namewire.modules import ModuleRegistry


@pytest.fixture()
def registry() -> ModuleRegistry:
    """Fresh registry per test."""
    return ModuleRegistry()


@pytest.fixture()
def extractor() -> AnnotationExtractor:
    """AnnotationExtractor instance."""
    return AnnotationExtractor()


@pytest.fixture(autouse=True)
def _clean_namewire_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep NAMEWIRE_* variables from the host out of the tests."""
    monkeypatch.delenv("NAMEWIRE_STRICT_DI", raising=False)
