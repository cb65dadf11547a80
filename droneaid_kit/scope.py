from __future__ import annotations

from typing import Any, List, Optional, TypeVar

T = TypeVar("T")

_RELEASE_METHODS = ("release", "dispose", "close")


def release_buffer(buf: Any) -> bool:
    """
    Release one buffer-like object.

    Runtime tensor handles expose one of `release()`, `dispose()` or `close()`;
    plain NumPy arrays have none and are released by dropping the reference.
    Returns True when an explicit release method was called.
    """

    for name in _RELEASE_METHODS:
        method = getattr(buf, name, None)
        if callable(method):
            method()
            return True
    return False


class BufferScope:
    """
    Track intermediate buffers and release all of them when the scope exits.

    Usage:

        with BufferScope() as scope:
            tmp = scope.track(make_tmp())
            out = scope.keep(scope.track(build(tmp)))
        # tmp released here, on success or on error; out survives

    Buffers are released in reverse acquisition order. If the body raised, the
    original exception propagates after every buffer has been released.
    """

    def __init__(self) -> None:
        self._tracked: List[Any] = []
        self._closed = False

    def __enter__(self) -> "BufferScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(propagate=exc is None)

    @property
    def tracked(self) -> int:
        return len(self._tracked)

    def track(self, buf: T) -> T:
        if self._closed:
            raise RuntimeError("BufferScope is already closed.")
        if buf is not None:
            self._tracked.append(buf)
        return buf

    def keep(self, buf: T) -> T:
        """Untrack `buf` so it outlives the scope."""
        for i in range(len(self._tracked) - 1, -1, -1):
            if self._tracked[i] is buf:
                del self._tracked[i]
        return buf

    def close(self, propagate: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        first_error: Optional[BaseException] = None
        while self._tracked:
            buf = self._tracked.pop()
            try:
                release_buffer(buf)
            except Exception as e:
                if first_error is None:
                    first_error = e
        if first_error is not None and propagate:
            raise first_error
