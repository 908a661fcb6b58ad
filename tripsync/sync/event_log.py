"""Append-only durable queue of domain events awaiting delivery.

The whole ordered event sequence is kept in memory and written to the
persisted store as a single document after every mutation, so a restart
resumes from the last persisted status of every event.
"""

import json
import logging
from datetime import datetime
from typing import Any

from ..errors import StoreError
from ..store import PersistedStore
from .events import Event, EventKind, EventPayload, EventStatus

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "event_queue"


class EventLog:
    """Ordered event queue backed by a PersistedStore.

    Recording an event never fails because of storage: write errors are
    logged and exposed through ``durability_degraded`` instead of raised.
    """

    def __init__(self, store: PersistedStore, queue_key: str = DEFAULT_QUEUE_KEY):
        """Initialize the log and restore any persisted events.

        Args:
            store: Store holding the serialized queue.
            queue_key: Key under which the queue document is stored.
        """
        self._store = store
        self.queue_key = queue_key
        self._events: list[Event] = []
        self._index: dict[str, Event] = {}
        self._last_persist_error: str | None = None
        self._restored = False
        self._restore()

    def _restore(self) -> bool:
        """Load the queue document from the store.

        Entries that cannot be parsed are copied to a quarantine key and
        the rest are kept. Until the stored document has been read (and
        anything unparseable quarantined), the log holds its writes so the
        stored queue is never overwritten with a partial view.

        Returns:
            True once the stored queue has been taken over.
        """
        try:
            document = self._store.read_text(self.queue_key)
        except StoreError as e:
            self._last_persist_error = str(e)
            logger.error(f"Cannot read stored event queue, holding writes: {e}")
            return False

        restored: list[Event] = []
        if document is not None:
            try:
                items = json.loads(document)
            except json.JSONDecodeError:
                items = None

            if not isinstance(items, list):
                if not self._quarantine(document):
                    return False
                items = []

            rejected = []
            for item in items:
                try:
                    restored.append(Event.from_dict(item))
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.error(f"Unreadable stored event, quarantining: {e}")
                    rejected.append(item)

            if rejected and not self._quarantine(rejected):
                return False

        # Events recorded while writes were held go after the stored ones
        known = {event.id for event in restored}
        self._events = restored + [e for e in self._events if e.id not in known]
        self._index = {event.id: event for event in self._events}
        self._restored = True

        if restored:
            logger.info(
                f"Restored {len(restored)} events "
                f"({len(self.get_pending())} pending) from '{self.queue_key}'"
            )
        return True

    def _quarantine(self, value: Any) -> bool:
        """Keep unparseable queue data under a separate key."""
        key = f"{self.queue_key}.corrupt.{datetime.now().strftime('%Y%m%dT%H%M%S%f')}"
        try:
            self._store.set(key, value)
        except StoreError as e:
            self._last_persist_error = str(e)
            logger.error(f"Cannot quarantine stored event data, holding writes: {e}")
            return False

        logger.warning(f"Quarantined unreadable event data under '{key}'")
        return True

    @property
    def quarantine_keys(self) -> list[str]:
        """Store keys holding quarantined queue data."""
        prefix = f"{self.queue_key}.corrupt."
        return [key for key in self._store.keys() if key.startswith(prefix)]

    def _persist(self) -> bool:
        """Write the entire log to the store.

        Returns:
            True if the write succeeded.
        """
        if not self._restored and not self._restore():
            logger.warning("Event queue kept in memory until the stored queue is readable")
            return False

        try:
            self._store.set(self.queue_key, [event.to_dict() for event in self._events])
        except StoreError as e:
            self._last_persist_error = str(e)
            logger.error(f"Event queue write failed, continuing in memory: {e}")
            return False

        if self._last_persist_error is not None:
            logger.info("Event queue durability restored")
        self._last_persist_error = None
        return True

    @property
    def durability_degraded(self) -> bool:
        """True if the log is not currently mirrored in the store."""
        return self._last_persist_error is not None

    @property
    def last_persist_error(self) -> str | None:
        return self._last_persist_error

    def add_event(
        self,
        kind: EventKind | str,
        payload: EventPayload | dict[str, Any],
    ) -> Event:
        """Record a new PENDING event.

        Args:
            kind: Event kind tag.
            payload: Payload matching the kind's schema.

        Returns:
            The created Event.

        Raises:
            InvalidEventError: If kind or payload is malformed.
        """
        event = Event.create(kind, payload)
        self._events.append(event)
        self._index[event.id] = event
        self._persist()

        logger.debug(f"Recorded {event.kind.value} event {event.id}")
        return event

    def get(self, event_id: str) -> Event | None:
        return self._index.get(event_id)

    def all(self) -> list[Event]:
        """All events in insertion order."""
        return list(self._events)

    def get_pending(self) -> list[Event]:
        """PENDING events in insertion order."""
        return [e for e in self._events if e.status is EventStatus.PENDING]

    def get_pending_count(self) -> int:
        return sum(1 for e in self._events if e.status is EventStatus.PENDING)

    def _pending_event(self, event_id: str) -> Event | None:
        event = self._index.get(event_id)
        if event is None:
            logger.warning(f"Unknown event {event_id}")
            return None
        if event.status.is_terminal:
            logger.warning(
                f"Refusing transition of {event_id}: already {event.status.value}"
            )
            return None
        return event

    def mark_synced(self, event_id: str) -> bool:
        """Mark a PENDING event as delivered.

        Returns:
            True if the event moved to SYNCED.
        """
        event = self._pending_event(event_id)
        if event is None:
            return False
        event.status = EventStatus.SYNCED
        self._persist()
        return True

    def mark_failed(self, event_id: str) -> bool:
        """Abandon a PENDING event.

        Returns:
            True if the event moved to FAILED.
        """
        event = self._pending_event(event_id)
        if event is None:
            return False
        event.status = EventStatus.FAILED
        self._persist()
        return True

    def record_failure(self, event_id: str, max_retries: int) -> EventStatus | None:
        """Count one failed delivery attempt.

        The event is abandoned once its retry count exceeds ``max_retries``.

        Args:
            event_id: Event that failed delivery.
            max_retries: Failed attempts tolerated before abandoning.

        Returns:
            The event's status after the update, or None if it was not pending.
        """
        event = self._pending_event(event_id)
        if event is None:
            return None

        event.retry_count += 1
        if event.retry_count > max_retries:
            event.status = EventStatus.FAILED
            logger.warning(
                f"Event {event.id} ({event.kind.value}) abandoned "
                f"after {event.retry_count} failed attempts"
            )
        self._persist()
        return event.status

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        counts = {status: 0 for status in EventStatus}
        for event in self._events:
            counts[event.status] += 1

        return {
            "total": len(self._events),
            "pending": counts[EventStatus.PENDING],
            "synced": counts[EventStatus.SYNCED],
            "failed": counts[EventStatus.FAILED],
            "durability_degraded": self.durability_degraded,
        }

    def compact(self) -> int:
        """Drop SYNCED and FAILED events from the log.

        Returns:
            Number of events removed.
        """
        kept = [e for e in self._events if e.status is EventStatus.PENDING]
        removed = len(self._events) - len(kept)
        if removed == 0:
            return 0

        self._events = kept
        self._index = {event.id: event for event in kept}
        self._persist()

        logger.info(f"Compacted event queue, removed {removed} settled events")
        return removed
