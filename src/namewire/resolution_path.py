from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar

from namewire.defaults import CHAIN_SEPARATOR

# Context variable for resolution tracking (works with both threads and async tasks)
# Stores (injector_id, path) where path is an immutable tuple ordered outermost first
_resolution_path: ContextVar[tuple[int, tuple[str, ...]] | None] = ContextVar(
    "resolution_path",
    default=None,
)


def get_resolution_path(owner: object) -> tuple[str, ...] | None:
    """Return the path of the resolution ``owner`` is running in this context.

    ``None`` means no resolution of ``owner`` is in progress, so the next
    lookup is a top-level one and starts a fresh path. Each asyncio task and
    thread sees its own copy of the variable, and tuples are never mutated,
    so concurrent resolutions cannot corrupt each other's paths.
    """
    stored = _resolution_path.get()
    if stored is None:
        return None
    owner_id, path = stored
    if owner_id != id(owner):
        return None
    return path


def start_path(caller: str | None) -> tuple[str, ...]:
    """Create the path for a top-level lookup, seeded with the external caller."""
    return (caller,) if caller is not None else ()


@contextmanager
def resolution_frame(owner: object, path: tuple[str, ...]) -> Iterator[None]:
    """Publish ``path`` as the current resolution path of ``owner``."""
    token = _resolution_path.set((id(owner), path))
    try:
        yield
    finally:
        _resolution_path.reset(token)


def build_chain(name: str, path: Sequence[str]) -> tuple[str, ...]:
    """Return ``name`` followed by its requesters, innermost first."""
    return (name, *reversed(path))


def format_chain(chain: Sequence[str]) -> str:
    """Join a chain into ``name <- requester <- ...`` notation."""
    return CHAIN_SEPARATOR.join(chain)
