from __future__ import annotations

from typing import Any, Callable

Listener = Callable[[Any], None]


class EventSource:
    """Minimal synchronous event dispatcher.

    Listeners run in registration order on the caller's thread, the same way DOM
    event targets and three.js dispatchers deliver events. A listener that is removed
    while an event is being dispatched still sees that event.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def add_listener(self, event_type: str, listener: Listener) -> Callable[[], None]:
        listeners = self._listeners.setdefault(event_type, [])
        if listener not in listeners:
            listeners.append(listener)

        def _unsubscribe() -> None:
            self.remove_listener(event_type, listener)

        return _unsubscribe

    def remove_listener(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type)
        if not listeners:
            return
        self._listeners[event_type] = [cb for cb in listeners if cb != listener]

    def has_listener(self, event_type: str, listener: Listener | None = None) -> bool:
        listeners = self._listeners.get(event_type, [])
        if listener is None:
            return len(listeners) > 0
        return listener in listeners

    def dispatch(self, event_type: str, event: Any = None) -> None:
        for listener in list(self._listeners.get(event_type, ())):
            listener(event)
