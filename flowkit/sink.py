"""Sinks: destinations that consume the streams a flow produces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping

from .context import Context, ContextError
from .core import Channel, Flow, Source, Stream, empty, from_items, from_source


class Sinker(ABC):
    """A destination for a flow's output."""

    @abstractmethod
    def collect(self, ctx: Context, stream: Stream) -> None:
        """Consume ``stream``, stopping early if ``ctx`` is done."""


class SinkerFunc(Sinker):
    """A Sinker backed by a plain function of a context and a stream."""

    def __init__(self, fn: Callable[[Context, Stream], None]) -> None:
        self._fn = fn

    def collect(self, ctx: Context, stream: Stream) -> None:
        self._fn(ctx, stream)


class SliceSink(Sinker):
    """Accumulates every item of a stream into a list."""

    def __init__(self, items: list[Any] | None = None) -> None:
        self._items: list[Any] = items if items is not None else []

    @property
    def items(self) -> list[Any]:
        """The list holding the collected items."""
        return self._items

    def collect(self, ctx: Context, stream: Stream) -> None:
        for item in stream:
            if ctx.err() is not None:
                return
            self._items.append(item)


class ChannelSink(Sinker):
    """Forwards every item of a stream onto a channel, closing it afterwards."""

    def __init__(self, channel: Channel) -> None:
        self.channel = channel

    def collect(self, ctx: Context, stream: Stream) -> None:
        try:
            for item in stream:
                if ctx.err() is not None:
                    return
                try:
                    self.channel.send(item, ctx)
                except ContextError:
                    return
        finally:
            self.channel.close()


class FanOutSink(Sinker):
    """Partitions a stream into one Source per key.

    ``key`` maps each item to its partition name; ``flows`` maps partition
    names to functions that build a Flow from that partition's Source.
    """

    def __init__(
        self,
        key: Callable[[Context, Any], str],
        flows: Mapping[str, Callable[[Source], Flow]] | None = None,
    ) -> None:
        self.key = key
        self.flows: dict[str, Callable[[Source], Flow]] = dict(flows or {})
        self._sources: dict[str, Source] = {}

    def sources(self) -> list[Source]:
        """Return the partition Sources built by the last collect."""
        return list(self._sources.values())

    def source(self, key: str) -> Source:
        """Return the Source for ``key``, or an empty stream if there is none."""
        return self._sources.get(key, empty())

    def collect(self, ctx: Context, stream: Stream) -> None:
        groups: dict[str, list[Any]] = {}
        for item in stream:
            if ctx.err() is not None:
                return
            groups.setdefault(self.key(ctx, item), []).append(item)
        self._sources = {name: from_items(*values) for name, values in groups.items()}


def collect(ctx: Context, source: Source) -> list[Any]:
    """Run ``source`` to completion and return its items as a list.

    Raises a FlowError if any errors were recorded, or the context's error
    if the context ended first.
    """
    sink = SliceSink()
    from_source(source).collect(ctx, sink)
    return sink.items


def discard() -> Sinker:
    """Return a Sinker that drains a stream and keeps nothing."""

    def drain(ctx: Context, stream: Stream) -> None:
        for _ in stream:
            if ctx.err() is not None:
                return

    return SinkerFunc(drain)