"""Owned listener lists used instead of process-wide event channels."""

from __future__ import annotations

import logging
from typing import Callable, Generic, ParamSpec
from weakref import WeakMethod

LOGGER = logging.getLogger(__name__)

P = ParamSpec("P")


class ListenerList(Generic[P]):
    """Ordered set of callbacks owned by a single publisher.

    Handlers are invoked synchronously in registration order. A handler that
    raises is logged and the remaining handlers still run. Bound methods are
    held through :class:`weakref.WeakMethod` so subscribers do not have to
    unsubscribe before being garbage collected.
    """

    __slots__ = ("_name", "_handlers")

    def __init__(self, name: str = "listeners") -> None:
        self._name = name
        self._handlers: list[_HandlerRef] = []

    def subscribe(self, handler: Callable[P, None]) -> Callable[[], None]:
        """Register ``handler`` and return a callable that removes it."""

        self._handlers.append(_HandlerRef.create(handler))
        LOGGER.debug("Subscribed %s to %s", _handler_name(handler), self._name)

        def _unsubscribe() -> None:
            self.unsubscribe(handler)

        return _unsubscribe

    def unsubscribe(self, handler: Callable[P, None]) -> None:
        for index, handler_ref in enumerate(self._handlers):
            if handler_ref.matches(handler):
                self._handlers.pop(index)
                return

    def notify(self, *args: P.args, **kwargs: P.kwargs) -> None:
        stale = False
        for handler_ref in list(self._handlers):
            handler = handler_ref.resolve()
            if handler is None:
                stale = True
                continue
            try:
                handler(*args, **kwargs)
            except Exception:
                LOGGER.exception("Listener %s on %s raised", _handler_name(handler), self._name)
        if stale:
            self._handlers = [ref for ref in self._handlers if ref.resolve() is not None]

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)


class _HandlerRef:
    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: object, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Callable[..., None]) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)  # type: ignore[arg-type]
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Callable[..., None] | None:
        if self._is_weak:
            return self._ref()  # type: ignore[operator]
        return self._ref  # type: ignore[return-value]

    def matches(self, handler: Callable[..., None]) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Callable[..., None]) -> str:
    if hasattr(handler, "__qualname__"):
        return handler.__qualname__
    return repr(handler)


__all__ = ["ListenerList"]
