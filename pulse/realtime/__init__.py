from pulse.realtime.connection_manager import ConnectionManager
from pulse.realtime.dispatcher import RealtimeDispatcher
from pulse.realtime.publisher import RealtimePublisher

__all__ = [
    "ConnectionManager",
    "RealtimeDispatcher",
    "RealtimePublisher",
]
