import threading
from datetime import datetime

import pytest

from flowkit.context import Canceled, Context, DeadlineExceeded, FlowError, set_error
from flowkit.core import (
    Channel,
    Flow,
    SourceFunc,
    Stream,
    empty,
    from_channel,
    from_items,
    from_range,
    from_source,
    from_source_func,
    from_ticker,
    merge,
)


class _ListSink:
    def __init__(self):
        self.items = []

    def collect(self, ctx, stream):
        for item in stream:
            if ctx.err() is not None:
                return
            self.items.append(item)


def _gather(ctx, source):
    sink = _ListSink()
    from_source(source).collect(ctx, sink)
    return sink.items


def _mapping(fn):
    def pipe(src):
        return SourceFunc(lambda ctx: (fn(x) for x in src.stream(ctx)))

    return pipe


def _range_generator(ctx):
    yield from range(3)


def _erroring_generator(ctx):
    yield 1
    set_error(ctx, ValueError("boom"))
    yield 2


def test_from_ticker_runs_until_deadline():
    ctx = Context.background().with_timeout(0.05)
    sink = _ListSink()
    with pytest.raises(DeadlineExceeded, match="context deadline exceeded"):
        from_ticker(0.001).collect(ctx, sink)
    assert all(isinstance(ts, datetime) for ts in sink.items)
    assert sink.items == sorted(sink.items)


def test_from_range():
    assert _gather(Context.background(), from_range(0, 5, 1)) == [0, 1, 2, 3, 4]


def test_from_range_with_step():
    assert _gather(Context.background(), from_range(1, 8, 3)) == [1, 4, 7]


def test_from_channel():
    ch = Channel(3)
    for n in (1, 2, 3):
        ch.send(n)
    ch.close()
    assert _gather(Context.background(), from_channel(ch)) == [1, 2, 3]


def test_from_channel_stops_on_deadline():
    ch = Channel(1)
    ch.send(1)
    ctx = Context.background().with_timeout(0.05)
    sink = _ListSink()
    with pytest.raises(DeadlineExceeded):
        from_channel(ch).collect(ctx, sink)
    assert sink.items == [1]


def test_merge():
    f1 = from_items(1, 2, 3)
    f2 = from_items(4, 5, 6)
    assert _gather(Context.background(), merge(f1, f2)) == [1, 2, 3, 4, 5, 6]


def test_flow_clone():
    src1 = from_items(1, 2, 3)
    src2 = src1.clone()
    ctx = Context.background()
    assert _gather(ctx, src1.transform(_mapping(lambda n: n * 2))) == [2, 4, 6]
    assert _gather(ctx, src2.transform(_mapping(lambda n: n * 3))) == [3, 6, 9]


def test_empty():
    assert _gather(Context.background(), from_source(empty())) == []
    assert list(empty()) == []


def test_transform_without_pipes_passes_through():
    assert _gather(Context.background(), from_items(1, 2, 3).transform()) == [1, 2, 3]


def test_transforms_compose_in_order():
    flow = from_items(1, 2, 3).transform(_mapping(lambda n: n * 2), _mapping(str))
    assert _gather(Context.background(), flow) == ["2", "4", "6"]


def test_stream_is_reiterable():
    stream = Stream(lambda: iter([1, 2]))
    assert list(stream) == [1, 2]
    assert list(stream) == [1, 2]
    ctx = Context.background()
    assert stream.stream(ctx) is stream


def test_from_source_func_with_generator():
    result = _gather(Context.background(), from_source_func(_range_generator))
    assert result == [0, 1, 2]


def test_collect_raises_recorded_errors():
    sink = _ListSink()
    with pytest.raises(FlowError) as info:
        from_source_func(_erroring_generator).collect(Context.background(), sink)
    assert str(info.value) == "boom"
    assert sink.items == [1, 2]


def test_collect_on_cancelled_context():
    ctx = Context.background().with_cancel()
    ctx.cancel()
    sink = _ListSink()
    with pytest.raises(Canceled):
        from_items(1, 2, 3).collect(ctx, sink)
    assert sink.items == []


def test_collect_succeeds():
    sink = _ListSink()
    assert from_items(1, 2, 3).collect(Context.background(), sink) is None
    assert sink.items == [1, 2, 3]


def test_flow_is_built_lazily():
    calls = []

    def factory():
        calls.append(1)
        return from_items(7)

    flow = Flow(factory)
    assert calls == []
    assert _gather(Context.background(), flow) == [7]
    assert calls == [1]


def test_unbuffered_channel_hand_off():
    ch = Channel()

    def produce():
        for n in (1, 2, 3):
            ch.send(n)
        ch.close()

    worker = threading.Thread(target=produce)
    worker.start()
    assert list(ch) == [1, 2, 3]
    worker.join(2)
    assert not worker.is_alive()


def test_channel_send_on_closed_raises():
    ch = Channel(1)
    ch.close()
    with pytest.raises(ValueError):
        ch.send(1)
    with pytest.raises(ValueError):
        ch.close()


def test_channel_receive_errors():
    ch = Channel(1)
    with pytest.raises(TimeoutError):
        ch.receive(timeout=0.01)
    ch.send("x")
    ch.close()
    assert ch.receive() == "x"
    with pytest.raises(EOFError):
        ch.receive()


def test_channel_send_respects_context():
    ch = Channel(1)
    ch.send(1)
    ctx = Context.background().with_timeout(0.02)
    with pytest.raises(DeadlineExceeded):
        ch.send(2, ctx)
    ch.close()
    assert list(ch) == [1]


def test_unbuffered_send_withdrawn_on_cancel():
    ch = Channel()
    ctx = Context.background().with_timeout(0.02)
    with pytest.raises(DeadlineExceeded):
        ch.send("lost", ctx)
    ch.close()
    assert list(ch) == []


def test_negative_capacity_rejected():
    with pytest.raises(ValueError):
        Channel(-1)