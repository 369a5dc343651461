import threading
from typing import Any

import pytest

from flowkit.context import Canceled, Context, DeadlineExceeded, FlowError
from flowkit.core import Channel, empty, from_channel, from_items, from_range, from_source, from_ticker, merge
from flowkit.iterable import Iterable, from_iterable
from flowkit.sink import ChannelSink, FanOutSink, SinkerFunc, SliceSink, collect, discard


class FibonacciIterator(Iterable):
    def __init__(self, limit: int) -> None:
        self.prev = 0
        self.current = 1
        self.limit = limit
        self.closed = False

    def has_next(self, ctx: Context) -> bool:
        if self.closed:
            return False
        return self.current < self.limit

    def next(self, ctx: Context) -> Any:
        if self.closed:
            raise RuntimeError("iterator is closed")
        if self.current >= self.limit:
            raise RuntimeError("no more Fibonacci numbers")
        value = self.current
        self.prev, self.current = self.current, self.prev + self.current
        return value

    def close(self, ctx: Context) -> None:
        self.closed = True


class FailingIterable(Iterable):
    def __init__(self) -> None:
        self.values = [1, "bad", 3]
        self.closed = False

    def has_next(self, ctx: Context) -> bool:
        return bool(self.values)

    def next(self, ctx: Context) -> Any:
        value = self.values.pop(0)
        if value == "bad":
            raise RuntimeError("bad item")
        return value

    def close(self, ctx: Context) -> None:
        self.closed = True


def test_ticker_stops_at_deadline():
    ctx = Context.background().with_timeout(0.01)
    with pytest.raises(DeadlineExceeded, match="context deadline exceeded"):
        from_ticker(0.001).collect(ctx, discard())


def test_collect_range():
    assert collect(Context.background(), from_range(0, 5, 1)) == [0, 1, 2, 3, 4]


def test_collect_channel():
    channel = Channel(3)
    for value in (1, 2, 3):
        channel.send(value)
    channel.close()
    assert collect(Context.background(), from_channel(channel)) == [1, 2, 3]


def test_collect_merge():
    merged = merge(from_items(1, 2, 3), from_items(4, 5, 6))
    assert collect(Context.background(), merged) == [1, 2, 3, 4, 5, 6]


def test_collect_empty():
    assert collect(Context.background(), from_source(empty())) == []


@pytest.mark.parametrize(
    "limit, expected",
    [(1, []), (2, [1, 1]), (10, [1, 1, 2, 3, 5, 8])],
)
def test_collect_fibonacci(limit, expected):
    assert collect(Context.background(), from_iterable(FibonacciIterator(limit))) == expected


def test_shared_iterable_is_exhausted_for_clone():
    iterator = FibonacciIterator(10)
    flow = from_iterable(iterator)
    ctx = Context.background()
    assert collect(ctx, flow) == [1, 1, 2, 3, 5, 8]
    assert iterator.closed is True
    assert collect(ctx, flow.clone()) == []


def test_collect_raises_flow_error():
    iterable = FailingIterable()
    with pytest.raises(FlowError) as info:
        collect(Context.background(), from_iterable(iterable))
    assert [str(err) for err in info.value.errors] == ["bad item"]
    assert iterable.closed is True


def test_discard_succeeds():
    assert from_items(1, 2, 3).collect(Context.background(), discard()) is None


def test_discard_cancelled_context_raises():
    ctx = Context.background().with_cancel()
    ctx.cancel()
    with pytest.raises(Canceled):
        from_items(1, 2, 3).collect(ctx, discard())


def test_sinker_func_receives_items():
    seen = []
    sink = SinkerFunc(lambda ctx, stream: seen.extend(stream))
    from_items("a", "b").collect(Context.background(), sink)
    assert seen == ["a", "b"]


def test_slice_sink_appends_to_initial_list():
    sink = SliceSink([0])
    from_items(1, 2).collect(Context.background(), sink)
    assert sink.items == [0, 1, 2]


def test_slice_sink_default_is_empty():
    sink = SliceSink()
    from_source(empty()).collect(Context.background(), sink)
    assert sink.items == []


def test_channel_sink_forwards_and_closes():
    channel = Channel()
    received = []
    consumer = threading.Thread(target=lambda: received.extend(channel))
    consumer.start()
    from_items(1, 2, 3).collect(Context.background(), ChannelSink(channel))
    consumer.join(timeout=5)
    assert received == [1, 2, 3]
    with pytest.raises(EOFError):
        channel.receive(timeout=0.1)


def test_channel_sink_cancelled_context_closes_channel():
    channel = Channel()
    ctx = Context.background().with_cancel()
    ctx.cancel()
    with pytest.raises(Canceled):
        from_items(1, 2, 3).collect(ctx, ChannelSink(channel))
    assert list(channel) == []


def test_fan_out_sink_partitions():
    sink = FanOutSink(
        key=lambda ctx, i: "even" if i % 2 == 0 else "odd",
        flows={"odd": from_source, "even": from_source},
    )
    from_items(1, 2, 3, 4).collect(Context.background(), sink)
    ctx = Context.background()
    assert len(sink.sources()) == 2
    assert collect(ctx, sink.source("odd")) == [1, 3]
    assert collect(ctx, sink.flows["even"](sink.source("even"))) == [2, 4]


def test_fan_out_sink_missing_key_is_empty():
    sink = FanOutSink(key=lambda ctx, i: "all")
    from_items(1, 2).collect(Context.background(), sink)
    assert collect(Context.background(), sink.source("none")) == []
    assert collect(Context.background(), sink.source("all")) == [1, 2]