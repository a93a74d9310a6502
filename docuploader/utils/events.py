from dataclasses import dataclass
from typing import Dict, List, Callable
import asyncio
import logging
logger = logging.getLogger(__name__)


@dataclass
class ItemProgress:
    """Progress information for a single upload item."""
    item_id: str
    filename: str
    bytes_sent: int = 0
    total_bytes: int = 0
    percent: int = 0


class EventEmitter:
    """Simple event emitter for upload and processing events.

    Listeners may emit again or subscribe from inside a callback; each emit
    works on a snapshot of the listeners registered when it started.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners. Listener errors are logged, not raised."""
        for callback in list(self._listeners.get(event_name, ())):
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(*args, **kwargs)
                else:
                    callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}")
