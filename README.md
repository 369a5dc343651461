# flowkit

Composable, pull-based streaming pipelines with context-aware cancellation,
error collection and a set of ready-made transforms. Pure Python, no
dependencies.

A pipeline has three parts:

- a **source**, which produces a stream of values: `from_items`, `from_range`,
  `from_channel`, `from_ticker`, `from_iterable`, `merge`, or your own
  `SourceFunc`;
- zero or more **transforms**, which reshape the stream: `map_each`,
  `filter_items`, `keep`, `skip`, `chunk`, `sliding_window`, `limit` and more;
- a **sink**, which consumes the stream: `SliceSink`, `ChannelSink`,
  `FanOutSink`, or `discard()`.

Every stage receives a `Context`. The context carries cancellation and
deadlines, and it collects the errors that stages report along the way.

The package is laid out as five modules:

| Module | Contents |
| --- | --- |
| `flowkit.context` | `Context`, `ContextError`, `Canceled`, `DeadlineExceeded`, `FlowError`, `set_error` |
| `flowkit.core` | `Source`, `Stream`, `SourceFunc`, `Flow`, `Channel` and the source constructors |
| `flowkit.iterable` | the `Iterable` cursor interface and `from_iterable` |
| `flowkit.sink` | `Sinker`, `SinkerFunc`, `SliceSink`, `ChannelSink`, `FanOutSink`, `collect`, `discard` |
| `flowkit.transform` | the transforms, `SlidingWindowOptions` and `RateLimiter` |

## A first pipeline

```python
from flowkit.context import Context
from flowkit.core import from_items
from flowkit.sink import collect
from flowkit.transform import keep_if, map_each

ctx = Context.background()

pipeline = from_items(1, 2, 3, 4).transform(
    map_each(lambda ctx, n: n * 2),
    keep_if(lambda ctx, n: n > 5),
)

print(collect(ctx, pipeline))  # [6, 8]
```

A `Flow` is a factory for a source, so it can be streamed more than once.
`Flow.clone()` returns a new `Flow` over the same source, which you can
transform differently:

```python
base = from_items(1, 2, 3)
doubled = base.transform(map_each(lambda ctx, n: n * 2))
tripled = base.clone().transform(map_each(lambda ctx, n: n * 3))
```

`Flow.stream(ctx)` returns a `Stream`, which you can iterate over directly;
each iteration starts the producer afresh:

```python
for item in from_items("a", "b", "c").stream(ctx):
    print(item)
```

## Sources

| Function (`flowkit.core`) | Produces |
| --- | --- |
| `empty()` | a `Stream` that yields nothing |
| `from_items(*items)` | the given items, in order |
| `from_range(start, end, step)` | integers from `start`, stepping by `step`, while below `end` |
| `from_channel(channel)` | items received from a `Channel` until it is closed and drained |
| `from_ticker(interval)` | a `datetime` every `interval` seconds, until the context ends |
| `from_source(source)`, `from_source_func(fn)` | a `Flow` wrapping any source, or a function `fn(ctx)` returning an iterable |
| `merge(*sources)` | every item of each source, one source after another |

Every source stops early once its context is cancelled or past its deadline.

`flowkit.iterable.from_iterable(iterable)` builds a flow from an object
implementing `Iterable`, with `has_next(ctx)`, `next(ctx)` and `close(ctx)`.
Calls on the iterable are serialised by a lock, and `close` is called once
streaming ends, however it ends. The flow drains the object it was given and
does not rewind it, so streaming the flow again continues from wherever that
object has got to. If `next` raises, the error is recorded on the flow and the
item is skipped.

### Channels

`Channel(capacity=0)` is a closable, thread-safe FIFO. With capacity 0 a
`send` waits until its value has been received; with a positive capacity it
waits only while the buffer is full.

- `send(item, ctx=None)` raises the context's error if `ctx` ends first, and
  `ValueError` on a closed channel.
- `receive(timeout=None)` raises `EOFError` once the channel is closed and
  empty, and `TimeoutError` when nothing arrives in time.
- `close()` raises `ValueError` if the channel is already closed.
- Iterating over a channel receives until it is closed and drained.

## Transforms

A transform is a function from a `Source` to a `Source`. All of these live in
`flowkit.transform`.

| Function | Effect |
| --- | --- |
| `pass_through()` | forwards items unchanged |
| `join(*transforms)` | composes transforms left to right; with none, `pass_through()` |
| `map_each(fn)` | `fn(ctx, item)` for each item |
| `parallel_map(n, fn)` | like `map_each`, on `n` worker threads; output order is not kept |
| `flat_map(fn)` | `fn(ctx, item)` returns an iterable whose elements are sent on one by one |
| `flatten()` | sends on each element of each incoming iterable |
| `reduce_running(fn)` | emits the running value `fn(ctx, acc, item)`; the first item seeds it |
| `keep(n)`, `keep_first()`, `keep_last()` | the first `n` items, the first, or the last |
| `skip(n)` | drops the first `n` items; `n <= 0` drops nothing |
| `filter_items(fn)`, `keep_if(fn)` | keeps items for which `fn(ctx, item)` is true |
| `omit_if(fn)` | drops items for which `fn(ctx, item)` is true |
| `keep_distinct(key=None)` | drops items whose `key(item)` was already seen; the default key is `str` |
| `chunk(n)` | groups items into lists of `n`; the last may be shorter |
| `sliding_window(window_size=2, step_size=1)` | lists of `window_size` items, moving by `step_size` |
| `limit(rate, burst)` | token-bucket pacing at `rate` items per second, bursts of up to `burst` |

`keep`, `chunk` and `parallel_map` raise `ValueError` for a negative count
(for `parallel_map`, a count below 1).

`sliding_window` normalises its settings through `SlidingWindowOptions`: a
step below 1 becomes 1, and a window smaller than the step grows to it.
Trailing items that never fill a window are not emitted.

```python
from flowkit.transform import chunk, sliding_window

collect(ctx, from_items(1, 2, 3, 4, 5).transform(chunk(2)))
# [[1, 2], [3, 4], [5]]

collect(ctx, from_items(1, 2, 3, 4).transform(sliding_window(2, 1)))
# [[1, 2], [2, 3], [3, 4]]
```

`limit` is built on `RateLimiter(rate, burst)`, whose `wait(ctx)` blocks until
a token is free. An infinite rate never waits; a `burst` below 1 can never
hold a token, so `wait` raises `ValueError`. A limiter is shared by every run
of the transform it belongs to.

## Sinks

`Flow.collect(ctx, sink)` runs a flow into any `Sinker`, and
`flowkit.sink.collect(ctx, source)` runs a source into a `SliceSink` and
returns the list.

| Sink | Behaviour |
| --- | --- |
| `SliceSink(items=None)` | appends every item to a list, available as `.items` |
| `discard()` | drains the stream and keeps nothing |
| `ChannelSink(channel)` | sends every item into a `Channel`, closing it when the stream ends |
| `FanOutSink(key, flows=None)` | groups items by `key(ctx, item)` into one source per key |
| `SinkerFunc(fn)` | calls `fn(ctx, stream)` |

After a run, `FanOutSink.sources()` lists the partition sources and
`FanOutSink.source(key)` returns one of them, or an empty stream for an
unknown key. The `flows` mapping is kept on the sink as `.flows` for the
caller to use with those sources; the sink itself only partitions.

```python
from flowkit.sink import FanOutSink, discard

from_items(1, 2, 3).collect(ctx, discard())

fan_out = FanOutSink(key=lambda ctx, n: "even" if n % 2 == 0 else "odd")
from_items(1, 2, 3, 4).collect(ctx, fan_out)
collect(ctx, fan_out.source("odd"))  # [1, 3]
```

## Errors and cancellation

A stage that cannot process an item reports it with `set_error(ctx, err)`.
The built-in stages do this when their function raises:

- `map_each`, `flat_map` and `from_iterable` record the error and skip the item;
- `reduce_running` and `limit` record the error and end the stream;
- a `parallel_map` worker records the error and stops.

When the run ends, the recorded errors are raised together as a `FlowError`;
its `errors` attribute holds them and its text joins them line by line:

```python
from flowkit.context import FlowError

def parse(ctx, text):
    return int(text)

try:
    collect(ctx, from_items("1", "x", "3").transform(map_each(parse)))
except FlowError as exc:
    print(exc.errors)
```

`Context.background()` makes a root context. `with_cancel()`,
`with_timeout(seconds)` and `with_value(key, value)` derive children;
cancelling a context cancels everything derived from it. `err()` tells why a
context is done, `wait(timeout)` blocks until it is, and using a context in a
`with` block cancels it on exit. A run on a context that ends raises
`Canceled` or `DeadlineExceeded`, both subclasses of `ContextError`:

```python
from flowkit.context import DeadlineExceeded
from flowkit.core import from_ticker

try:
    from_ticker(0.001).collect(Context.background().with_timeout(0.01), discard())
except DeadlineExceeded:
    print("ticker stopped")
```

## Writing your own stages

A source is a `Source` subclass whose `stream(ctx)` returns a `Stream`;
`SourceFunc` and `from_source_func` turn a plain function of a context into
one. A transform is any function that takes a source and returns a new one, so
your own transforms mix freely with the built-in ones in `Flow.transform` and
`join`. A sink is a `Sinker` subclass with a `collect(ctx, stream)` method;
`SinkerFunc` turns a plain function into one.

## What it does not do

flowkit is a library only: it has no command-line tool. Concurrency comes from
threads (`parallel_map`, `Channel`); there is no asyncio interface.