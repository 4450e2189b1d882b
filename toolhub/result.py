"""
Explicit success/failure value used by the fail-safe tool call pipeline.

Every combinator catches ``Exception`` raised by its callback and turns it into
a failed ``Result``; nothing leaves the chain until ``unwrap()``. Cancellation
(``asyncio.CancelledError``) is a ``BaseException`` and is not captured.
"""

from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class Result(Generic[T]):
    """Either a value or the exception that prevented producing it."""

    __slots__ = ("_value", "_error")

    def __init__(self, value: Optional[T] = None, error: Optional[Exception] = None):
        self._value = value
        self._error = error

    def __repr__(self) -> str:
        if self.is_ok:
            return f"Result.ok({self._value!r})"
        return f"Result.fail({self._error!r})"

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: Exception) -> "Result[Any]":
        return cls(error=error)

    @classmethod
    def of(cls, fn: Callable[..., T], *args, **kwargs) -> "Result[T]":
        """Run ``fn`` and capture its return value or exception."""
        try:
            return cls.ok(fn(*args, **kwargs))
        except Exception as e:
            return cls.fail(e)

    @classmethod
    async def of_async(
        cls, fn: Callable[..., Awaitable[T]], *args, **kwargs
    ) -> "Result[T]":
        """Await ``fn`` and capture its result or exception."""
        try:
            return cls.ok(await fn(*args, **kwargs))
        except Exception as e:
            return cls.fail(e)

    @property
    def is_ok(self) -> bool:
        return self._error is None

    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        """Transform the value; failures pass through untouched."""
        if not self.is_ok:
            return self
        return Result.of(fn, self._value)

    def and_then(self, fn: Callable[[T], "Result[U]"]) -> "Result[U]":
        """Chain a step that itself returns a ``Result``."""
        if not self.is_ok:
            return self
        try:
            return fn(self._value)
        except Exception as e:
            return Result.fail(e)

    def watch(self, fn: Callable[["Result[T]"], Any]) -> "Result[T]":
        """Observe the result without changing it.

        A watcher that raises turns the result into a failure.
        """
        try:
            fn(self)
        except Exception as e:
            return Result.fail(e)
        return self

    def recover(self, fn: Callable[[Exception], T]) -> "Result[T]":
        """Replace a failure with the value built from its error."""
        if self.is_ok:
            return self
        return Result.of(fn, self._error)

    def unwrap(self) -> T:
        if not self.is_ok:
            raise self._error
        return self._value
