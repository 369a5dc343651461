"""Cancellation contexts and error collection for flow pipelines."""

from __future__ import annotations

import threading
import weakref
from typing import Any

_NO_KEY = object()
_FLOW_ERROR_KEY = object()


class ContextError(Exception):
    """Base class for the reasons a context is done."""


class Canceled(ContextError):
    """Raised or reported when a context was cancelled."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceeded(ContextError):
    """Raised or reported when a context's deadline passed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class Context:
    """A tree of cancellable scopes that also carries keyed values.

    Cancelling a context cancels every context derived from it. Each derived
    context can be cancelled on its own without affecting its parent.
    """

    def __init__(self, parent: Context | None = None, key: Any = _NO_KEY, value: Any = None) -> None:
        self._parent = parent
        self._key = key
        self._value = value
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._err: ContextError | None = None
        self._children: weakref.WeakSet[Context] = weakref.WeakSet()
        self._timer: threading.Timer | None = None
        if parent is not None:
            parent._adopt(self)

    @classmethod
    def background(cls) -> Context:
        """Return a fresh root context with no deadline and no values."""
        return cls()

    def with_cancel(self) -> Context:
        """Return a child context that can be cancelled independently."""
        return Context(self)

    def with_timeout(self, seconds: float) -> Context:
        """Return a child context that expires after ``seconds``."""
        child = Context(self)
        if child.err() is not None:
            return child
        if seconds <= 0:
            child._finish(DeadlineExceeded())
            return child
        timer = threading.Timer(seconds, child._finish, args=(DeadlineExceeded(),))
        timer.daemon = True
        with child._lock:
            if child._err is not None:
                return child
            child._timer = timer
        timer.start()
        return child

    def with_value(self, key: Any, value: Any) -> Context:
        """Return a child context in which ``key`` maps to ``value``."""
        return Context(self, key, value)

    def value(self, key: Any) -> Any:
        """Look ``key`` up in this context and its ancestors; None if absent."""
        ctx: Context | None = self
        while ctx is not None:
            if ctx._key is not _NO_KEY and ctx._key == key:
                return ctx._value
            ctx = ctx._parent
        return None

    def cancel(self) -> None:
        """Cancel this context and everything derived from it."""
        self._finish(Canceled())

    def err(self) -> ContextError | None:
        """Return why the context is done, or None while it is still live."""
        return self._err

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context is done or ``timeout`` elapses.

        Returns True when the context is done.
        """
        return self._done.wait(timeout)

    def __enter__(self) -> Context:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()

    def _adopt(self, child: Context) -> None:
        with self._lock:
            err = self._err
            if err is None:
                self._children.add(child)
                return
        child._finish(err)

    def _finish(self, err: ContextError) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            children = list(self._children)
            self._children = weakref.WeakSet()
            timer, self._timer = self._timer, None
        self._done.set()
        if timer is not None:
            timer.cancel()
        for child in children:
            child._finish(err)
        if self._parent is not None:
            with self._parent._lock:
                self._parent._children.discard(self)


class FlowError(Exception):
    """Thread-safe collection of the errors raised while a flow ran."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._errors: list[BaseException | None] = []
        self._has_errors = False

    def append(self, err: BaseException | None) -> None:
        """Record ``err``; None is kept but does not count as an error."""
        with self._lock:
            self._errors.append(err)
            if err is not None:
                self._has_errors = True

    @property
    def has_errors(self) -> bool:
        return self._has_errors

    @property
    def errors(self) -> tuple[BaseException, ...]:
        with self._lock:
            return tuple(err for err in self._errors if err is not None)

    def __str__(self) -> str:
        return "\n".join(str(err) for err in self.errors)


def with_flow_error(ctx: Context, flow_error: FlowError) -> Context:
    """Return a child of ``ctx`` that carries ``flow_error``."""
    return ctx.with_value(_FLOW_ERROR_KEY, flow_error)


def get_flow_error(ctx: Context) -> FlowError:
    """Return the FlowError carried by ``ctx``."""
    found = ctx.value(_FLOW_ERROR_KEY)
    if isinstance(found, FlowError):
        return found
    raise LookupError("flow error context not found")


def set_error(ctx: Context, err: BaseException | None) -> None:
    """Record ``err`` in the FlowError carried by ``ctx``."""
    get_flow_error(ctx).append(err)