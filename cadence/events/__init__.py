from cadence.events.bus import EventBus, Listener
from cadence.events.catalog import EVENT_NAMES, EVENT_PAYLOADS, EventName

__all__ = [
    "EVENT_NAMES",
    "EVENT_PAYLOADS",
    "EventBus",
    "EventName",
    "Listener",
]
