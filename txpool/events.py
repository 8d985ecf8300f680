from typing import Callable, Dict, List

from txpool.logger import setup_logger

logger = setup_logger(__name__, include_location=True)


class EventEmitter:
    """Named listener registry. Listeners are plain callables run synchronously."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}

    def on(self, event: str, listener: Callable) -> Callable:
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def off(self, event: str, listener: Callable) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def remove_all_listeners(self, event: str = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args) -> bool:
        """Call every listener of event; returns False when nobody listens."""
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Listener for '{event}' raised")
        return bool(listeners)
