from tracker.context import TrackerContext
from tracker.retry import EntryState, RetryQueue
from tracker.session import EventKind, PlaybackSession, TrackerState, new_session_token
from tracker.tracker import TrackerGroup, TrackerHandle, init_tracker
from tracker.transport import DeliveryError, EventTransport

__all__ = [
    "DeliveryError",
    "EntryState",
    "EventKind",
    "EventTransport",
    "PlaybackSession",
    "RetryQueue",
    "TrackerContext",
    "TrackerGroup",
    "TrackerHandle",
    "TrackerState",
    "init_tracker",
    "new_session_token",
]
