"""Flows built from cursor-style iterables with explicit cleanup."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Iterator

from .context import Context, set_error
from .core import Flow, from_source_func


class Iterable(ABC):
    """A cursor over values with an explicit close step."""

    @abstractmethod
    def has_next(self, ctx: Context) -> bool:
        """Return True while more values are available."""

    @abstractmethod
    def next(self, ctx: Context) -> Any:
        """Return the next value, raising on failure."""

    @abstractmethod
    def close(self, ctx: Context) -> None:
        """Release any resources the cursor holds."""


class _ConcurrentIterable(Iterable):
    """Serialises every call on the wrapped iterable."""

    def __init__(self, inner: Iterable) -> None:
        self._inner = inner
        self._lock = threading.Lock()

    def has_next(self, ctx: Context) -> bool:
        with self._lock:
            return self._inner.has_next(ctx)

    def next(self, ctx: Context) -> Any:
        with self._lock:
            return self._inner.next(ctx)

    def close(self, ctx: Context) -> None:
        with self._lock:
            self._inner.close(ctx)


def from_iterable(iterable: Iterable) -> Flow:
    """Build a Flow that drains ``iterable`` and closes it afterwards.

    Errors raised by ``next`` are recorded on the flow and the item skipped.
    """

    def produce(ctx: Context) -> Iterator[Any]:
        cursor = _ConcurrentIterable(iterable)
        try:
            while cursor.has_next(ctx):
                if ctx.err() is not None:
                    return
                try:
                    item = cursor.next(ctx)
                except Exception as exc:
                    set_error(ctx, exc)
                    continue
                yield item
        finally:
            cursor.close(ctx)

    return from_source_func(produce)