"""Transforms: composable stages that turn one Source into another."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

from .context import Context, ContextError, set_error
from .core import Channel, Source, SourceFunc

Transform = Callable[[Source], Source]

_POLL_SECONDS = 0.02
_MISSING = object()


def _stage(produce: Callable[[Source, Context], Iterable[Any]]) -> Transform:
    """Build a Transform from a generator function of (source, ctx)."""

    def pipe(source: Source) -> Source:
        return SourceFunc(lambda ctx: produce(source, ctx))

    return pipe


def join(*pipes: Transform) -> Transform:
    """Compose ``pipes`` left to right; with none, return pass_through()."""
    if not pipes:
        return pass_through()

    def pipe(source: Source) -> Source:
        current = source
        for stage in pipes:
            current = stage(current)
        return current

    return pipe


def pass_through() -> Transform:
    """Return a Transform that forwards its source unchanged."""
    return lambda source: source


def map_each(fn: Callable[[Context, Any], Any]) -> Transform:
    """Apply ``fn`` to every item; items whose mapping raises are recorded and dropped."""

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        for item in source.stream(ctx):
            try:
                mapped = fn(ctx, item)
            except Exception as exc:
                set_error(ctx, exc)
                continue
            yield mapped

    return _stage(produce)


def parallel_map(n: int, fn: Callable[[Context, Any], Any]) -> Transform:
    """Apply ``fn`` to items on ``n`` worker threads; output order is not guaranteed.

    A worker whose mapping raises records the error and stops.
    """
    if n <= 0:
        raise ValueError(f"invalid number of workers: {n}")

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        scope = ctx.with_cancel()
        inbox = Channel(n)
        outbox = Channel()
        lock = threading.Lock()
        live = [n]

        def feed() -> None:
            try:
                for item in source.stream(scope):
                    inbox.send(item, scope)
            except ContextError:
                pass
            finally:
                inbox.close()

        def work() -> None:
            try:
                while True:
                    try:
                        item = inbox.receive(timeout=_POLL_SECONDS)
                    except TimeoutError:
                        if scope.err() is not None:
                            return
                        continue
                    except EOFError:
                        return
                    try:
                        mapped = fn(ctx, item)
                    except Exception as exc:
                        set_error(ctx, exc)
                        return
                    try:
                        outbox.send(mapped, scope)
                    except ContextError:
                        return
            finally:
                with lock:
                    live[0] -= 1
                    last = live[0] == 0
                if last:
                    outbox.close()

        threads = [threading.Thread(target=feed, daemon=True)]
        threads += [threading.Thread(target=work, daemon=True) for _ in range(n)]
        for thread in threads:
            thread.start()
        try:
            yield from outbox
        finally:
            scope.cancel()
            for thread in threads:
                thread.join()

    return _stage(produce)


def flat_map(fn: Callable[[Context, Any], Iterable[Any]]) -> Transform:
    """Map each item to an iterable and emit its elements one by one."""

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        for item in source.stream(ctx):
            try:
                batch = fn(ctx, item)
            except Exception as exc:
                set_error(ctx, exc)
                continue
            yield from batch

    return _stage(produce)


def flatten() -> Transform:
    """Emit every element of each upstream batch individually."""
    return flat_map(lambda _ctx, batch: batch)


def reduce_running(fn: Callable[[Context, Any, Any], Any]) -> Transform:
    """Emit the running accumulation of items; the first item seeds the accumulator.

    An error from ``fn`` is recorded and ends the stream.
    """

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        acc: Any = _MISSING
        for item in source.stream(ctx):
            if acc is _MISSING:
                acc = item
            else:
                try:
                    acc = fn(ctx, acc, item)
                except Exception as exc:
                    set_error(ctx, exc)
                    return
            yield acc

    return _stage(produce)


def keep(n: int) -> Transform:
    """Emit at most the first ``n`` items."""
    if n < 0:
        raise ValueError(f"invalid take count: {n}")

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        count = 0
        for item in source.stream(ctx):
            if count >= n:
                return
            yield item
            count += 1

    return _stage(produce)


def keep_first() -> Transform:
    """Emit only the first item."""
    return keep(1)


def skip(n: int) -> Transform:
    """Drop the first ``n`` items; with n <= 0 nothing is dropped."""
    if n <= 0:
        return pass_through()

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        skipped = 0
        for item in source.stream(ctx):
            if skipped < n:
                skipped += 1
                continue
            yield item

    return _stage(produce)


def keep_last() -> Transform:
    """Emit only the last item, or nothing for an empty stream."""

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        last: Any = _MISSING
        for item in source.stream(ctx):
            last = item
        if last is not _MISSING:
            yield last

    return _stage(produce)


def filter_items(fn: Callable[[Context, Any], bool]) -> Transform:
    """Emit only the items for which ``fn`` returns true."""

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        for item in source.stream(ctx):
            if fn(ctx, item):
                yield item

    return _stage(produce)


def keep_if(fn: Callable[[Context, Any], bool]) -> Transform:
    """Alias of filter_items."""
    return filter_items(fn)


def omit_if(fn: Callable[[Context, Any], bool]) -> Transform:
    """Drop the items for which ``fn`` returns true."""
    return filter_items(lambda ctx, item: not fn(ctx, item))


def keep_distinct(key: Callable[[Any], str] | None = None) -> Transform:
    """Drop items whose key was already seen; the default key is ``str(item)``."""
    key_fn = key if key is not None else str

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        seen: set[str] = set()
        for item in source.stream(ctx):
            item_key = key_fn(item)
            if item_key in seen:
                continue
            yield item
            seen.add(item_key)

    return _stage(produce)


def chunk(n: int) -> Transform:
    """Group items into lists of ``n``; the final list may be shorter."""
    if n < 0:
        raise ValueError(f"invalid chunk size: {n}")

    def produce(source: Source, ctx: Context) -> Iterator[list[Any]]:
        buffer: list[Any] = []
        for item in source.stream(ctx):
            buffer.append(item)
            if len(buffer) == n:
                yield buffer
                buffer = []
        if buffer:
            yield buffer

    return _stage(produce)


@dataclass
class SlidingWindowOptions:
    """Size of each window and how far it moves after each emission."""

    window_size: int = 2
    step_size: int = 1

    def __post_init__(self) -> None:
        if self.step_size <= 0:
            self.step_size = 1
        if self.window_size < self.step_size:
            self.window_size = self.step_size


def sliding_window(window_size: int = 2, step_size: int = 1) -> Transform:
    """Emit lists of ``window_size`` items, sliding ``step_size`` items each time.

    A step below 1 becomes 1, and a window smaller than the step grows to it.
    Trailing items that never fill a window are not emitted.
    """
    options = SlidingWindowOptions(window_size, step_size)

    def produce(source: Source, ctx: Context) -> Iterator[list[Any]]:
        buffer: list[Any] = []
        for item in source.stream(ctx):
            buffer.append(item)
            if len(buffer) == options.window_size:
                yield list(buffer)
                buffer = buffer[options.step_size:]

    return _stage(produce)


class RateLimiter:
    """A token bucket refilled at ``rate`` tokens per second, holding at most ``burst``."""

    def __init__(self, rate: float, burst: int) -> None:
        self.rate = rate
        self.burst = burst
        self._tokens = float(burst)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def wait(self, ctx: Context) -> None:
        """Block until a token is available.

        Raises the context's error if it ends first, and ValueError if the
        bucket can never hold a token.
        """
        err = ctx.err()
        if err is not None:
            raise err
        if math.isinf(self.rate) and self.rate > 0:
            return
        if self.burst < 1:
            raise ValueError(f"rate: wait(n=1) exceeds limiter's burst {self.burst}")
        with self._lock:
            now = time.monotonic()
            if self.rate > 0:
                self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.rate)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return
            delay = -self._tokens / self.rate if self.rate > 0 else None
        if ctx.wait(delay):
            with self._lock:
                self._tokens += 1
            raise ctx.err() or ContextError("context done")


def limit(rate: float, burst: int) -> Transform:
    """Pace items through a token bucket of ``rate`` per second and size ``burst``.

    A failed wait is recorded on the flow and ends the stream.
    """
    limiter = RateLimiter(rate, burst)

    def produce(source: Source, ctx: Context) -> Iterator[Any]:
        for item in source.stream(ctx):
            try:
                limiter.wait(ctx)
            except (ContextError, ValueError) as exc:
                set_error(ctx, exc)
                return
            yield item

    return _stage(produce)