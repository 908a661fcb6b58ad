"""Durable event queue and the loop that drains it.

Events are recorded locally first and delivered to the remote authority
whenever the link allows, so business actions never wait on the network.
"""

from .engine import SyncEngine, SyncResult, SyncStatus
from .event_log import EventLog
from .events import (
    Event,
    EventKind,
    EventStatus,
    TicketIssuePayload,
    TripEndPayload,
    TripStartPayload,
)

__all__ = [
    "Event",
    "EventKind",
    "EventLog",
    "EventStatus",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
    "TicketIssuePayload",
    "TripEndPayload",
    "TripStartPayload",
]
