from cadence.realtime.connection_manager import ConnectionContext, ConnectionManager
from cadence.realtime.gateway import RealtimeGateway
from cadence.realtime.presence import PresenceTracker, TypingTracker

__all__ = [
    "ConnectionContext",
    "ConnectionManager",
    "PresenceTracker",
    "RealtimeGateway",
    "TypingTracker",
]
