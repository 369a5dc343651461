"""Streams, sources and flows: the building blocks of a pipeline."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator

from .context import Context, ContextError, FlowError, with_flow_error

_POLL_SECONDS = 0.02


class Source(ABC):
    """Anything that produces a Stream of values for a context."""

    @abstractmethod
    def stream(self, ctx: Context) -> Stream:
        """Return a Stream of this source's values."""


class Stream(Source):
    """A re-iterable sequence; each iteration calls the producer afresh."""

    def __init__(self, producer: Callable[[], Iterable[Any]]) -> None:
        self._producer = producer

    def __iter__(self) -> Iterator[Any]:
        return iter(self._producer())

    def stream(self, ctx: Context) -> Stream:
        return self


class SourceFunc(Source):
    """A Source backed by a function of a context returning an iterable."""

    def __init__(self, fn: Callable[[Context], Iterable[Any]]) -> None:
        self._fn = fn

    def stream(self, ctx: Context) -> Stream:
        fn = self._fn
        return Stream(lambda: fn(ctx))


class Channel:
    """A closable FIFO for handing values between threads.

    With capacity 0 a send waits until its value has been received.
    """

    def __init__(self, capacity: int = 0) -> None:
        if capacity < 0:
            raise ValueError(f"invalid channel capacity: {capacity}")
        self._capacity = capacity
        self._buffer: deque[tuple[int, Any]] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._issued = 0
        self._taken = 0

    def _wait_for(self, ready: Callable[[], bool], ctx: Context | None) -> None:
        while not ready():
            if ctx is not None:
                err = ctx.err()
                if err is not None:
                    raise err
            self._cond.wait(_POLL_SECONDS if ctx is not None else None)

    def send(self, item: Any, ctx: Context | None = None) -> None:
        """Put ``item`` on the channel, giving up if ``ctx`` is done."""
        limit = max(self._capacity, 1)
        with self._cond:
            self._wait_for(lambda: self._closed or len(self._buffer) < limit, ctx)
            if self._closed:
                raise ValueError("send on closed channel")
            ticket = self._issued
            self._issued += 1
            self._buffer.append((ticket, item))
            self._cond.notify_all()
            if self._capacity:
                return
            try:
                self._wait_for(lambda: self._taken > ticket, ctx)
            except ContextError:
                for entry in self._buffer:
                    if entry[0] == ticket:
                        self._buffer.remove(entry)
                        self._cond.notify_all()
                        raise
                # Already received: the send went through.

    def close(self) -> None:
        """Close the channel; queued values can still be received."""
        with self._cond:
            if self._closed:
                raise ValueError("close of closed channel")
            self._closed = True
            self._cond.notify_all()

    def receive(self, timeout: float | None = None) -> Any:
        """Take the next value.

        Raises EOFError once the channel is closed and drained, and
        TimeoutError if nothing arrives within ``timeout`` seconds.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._buffer:
                if self._closed:
                    raise EOFError("channel closed")
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("channel receive timed out")
                self._cond.wait(remaining)
            ticket, item = self._buffer.popleft()
            self._taken = ticket + 1
            self._cond.notify_all()
            return item

    def __iter__(self) -> Iterator[Any]:
        while True:
            try:
                yield self.receive()
            except EOFError:
                return


class Flow(Source):
    """A reusable pipeline stage: a factory that builds a Source."""

    def __init__(self, factory: Callable[[], Source]) -> None:
        self._factory = factory

    def stream(self, ctx: Context) -> Stream:
        return self._factory().stream(ctx)

    def clone(self) -> Flow:
        """Return a Flow producing the same values as this one."""
        return from_source(self)

    def transform(self, *pipes: Callable[[Source], Source]) -> Flow:
        """Return a Flow that passes this one's source through ``pipes`` in order."""
        factory = self._factory

        def build() -> Source:
            current = factory()
            for pipe in pipes:
                current = pipe(current)
            return current

        return Flow(build)

    def collect(self, ctx: Context, sink: Any) -> None:
        """Run the flow into ``sink``.

        Raises a FlowError holding every error recorded during the run, or
        the context's error if the context ended first.
        """
        source = self._factory()
        flow_error = FlowError()
        flow_ctx = with_flow_error(ctx, flow_error)
        sink.collect(flow_ctx, source.stream(flow_ctx))
        if flow_error.has_errors:
            raise flow_error
        err = ctx.err()
        if err is not None:
            raise err


def empty() -> Stream:
    """Return a Stream that yields nothing."""
    return Stream(lambda: ())


def from_source(source: Source) -> Flow:
    """Wrap an existing Source in a Flow."""
    return Flow(lambda: source)


def from_source_func(fn: Callable[[Context], Iterable[Any]]) -> Flow:
    """Build a Flow from a function of a context returning an iterable."""
    return Flow(lambda: SourceFunc(fn))


def from_items(*items: Any) -> Flow:
    """Build a Flow that yields ``items`` in order."""

    def produce(ctx: Context) -> Iterator[Any]:
        for item in items:
            if ctx.err() is not None:
                return
            yield item

    return from_source_func(produce)


def from_channel(channel: Channel) -> Flow:
    """Build a Flow that yields from ``channel`` until it closes or the context ends."""

    def produce(ctx: Context) -> Iterator[Any]:
        while ctx.err() is None:
            try:
                item = channel.receive(timeout=_POLL_SECONDS)
            except TimeoutError:
                continue
            except EOFError:
                return
            yield item

    return from_source_func(produce)


def from_ticker(interval: float) -> Flow:
    """Build a Flow that yields the current time every ``interval`` seconds."""

    def produce(ctx: Context) -> Iterator[datetime]:
        while not ctx.wait(interval):
            yield datetime.now()

    return from_source_func(produce)


def from_range(start: int, end: int, step: int) -> Flow:
    """Build a Flow yielding start, start+step, ... while below ``end``."""

    def produce(ctx: Context) -> Iterator[int]:
        current = start
        while current < end:
            if ctx.err() is not None:
                return
            yield current
            current += step

    return from_source_func(produce)


def merge(*sources: Source) -> Flow:
    """Build a Flow yielding every value of each source, one source after another."""

    def produce(ctx: Context) -> Iterator[Any]:
        for source in sources:
            yield from source.stream(ctx)

    return from_source_func(produce)