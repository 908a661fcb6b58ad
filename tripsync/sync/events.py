"""Domain events recorded by the terminal and their typed payloads."""

import math
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import InvalidEventError


class EventKind(Enum):
    TRIP_START = "TRIP_START"
    TICKET_ISSUE = "TICKET_ISSUE"
    TRIP_END = "TRIP_END"


class EventStatus(Enum):
    """Delivery status of an event. SYNCED and FAILED are terminal."""

    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not EventStatus.PENDING


PAYMENT_TYPES = ("CASH", "MOBILE")


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidEventError(f"'{key}' must be a non-empty string")
    return value


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise InvalidEventError(f"'{key}' must be a string")
    return value


@dataclass(frozen=True)
class TripStartPayload:
    trip_id: str
    route_id: str | None = None
    route_name: str | None = None
    vehicle_reg: str | None = None
    start_time: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TripStartPayload":
        return cls(
            trip_id=_require_str(data, "trip_id"),
            route_id=_optional_str(data, "route_id"),
            route_name=_optional_str(data, "route_name"),
            vehicle_reg=_optional_str(data, "vehicle_reg"),
            start_time=_optional_str(data, "start_time"),
        )


@dataclass(frozen=True)
class TicketIssuePayload:
    trip_id: str
    amount: float
    payment_type: str = "CASH"
    passenger_phone: str | None = None
    ticket_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TicketIssuePayload":
        amount = data.get("amount")
        # bool is an int subclass
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise InvalidEventError("'amount' must be a number")
        if isinstance(amount, float) and not math.isfinite(amount):
            raise InvalidEventError("'amount' must be finite")
        if amount <= 0:
            raise InvalidEventError("'amount' must be positive")

        payment_type = data.get("payment_type", "CASH")
        if payment_type not in PAYMENT_TYPES:
            raise InvalidEventError(
                f"'payment_type' must be one of {', '.join(PAYMENT_TYPES)}"
            )

        return cls(
            trip_id=_require_str(data, "trip_id"),
            amount=amount,
            payment_type=payment_type,
            passenger_phone=_optional_str(data, "passenger_phone"),
            ticket_id=_optional_str(data, "ticket_id"),
        )


@dataclass(frozen=True)
class TripEndPayload:
    trip_id: str
    end_time: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TripEndPayload":
        return cls(
            trip_id=_require_str(data, "trip_id"),
            end_time=_optional_str(data, "end_time"),
        )


EventPayload = TripStartPayload | TicketIssuePayload | TripEndPayload

PAYLOAD_TYPES: dict[EventKind, type] = {
    EventKind.TRIP_START: TripStartPayload,
    EventKind.TICKET_ISSUE: TicketIssuePayload,
    EventKind.TRIP_END: TripEndPayload,
}


def parse_kind(kind: "EventKind | str") -> EventKind:
    """Coerce a kind tag to EventKind.

    Raises:
        InvalidEventError: If the tag is not a known kind.
    """
    if isinstance(kind, EventKind):
        return kind
    try:
        return EventKind(kind)
    except ValueError:
        raise InvalidEventError(f"Unknown event kind: {kind!r}") from None


def build_payload(kind: EventKind, payload: "EventPayload | dict[str, Any]") -> EventPayload:
    """Validate a payload against the schema for its kind.

    Args:
        kind: Event kind selecting the payload schema.
        payload: Either an already-typed payload or a plain dict.

    Returns:
        The typed payload.

    Raises:
        InvalidEventError: If the payload does not match the kind's schema.
    """
    payload_type = PAYLOAD_TYPES[kind]
    if isinstance(payload, payload_type):
        return payload
    if not isinstance(payload, dict):
        raise InvalidEventError(
            f"{kind.value} payload must be a dict or {payload_type.__name__}"
        )
    return payload_type.from_dict(payload)


@dataclass
class Event:
    """A business fact awaiting or having completed delivery."""

    id: str
    kind: EventKind
    payload: EventPayload
    created_at: datetime
    status: EventStatus = EventStatus.PENDING
    retry_count: int = 0

    @classmethod
    def create(cls, kind: "EventKind | str", payload: "EventPayload | dict[str, Any]") -> "Event":
        """Create a new PENDING event with a fresh id."""
        event_kind = parse_kind(kind)
        return cls(
            id=str(uuid.uuid4()),
            kind=event_kind,
            payload=build_payload(event_kind, payload),
            created_at=datetime.now(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "payload": asdict(self.payload),
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create from dictionary."""
        kind = parse_kind(data["kind"])
        return cls(
            id=data["id"],
            kind=kind,
            payload=build_payload(kind, data["payload"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            status=EventStatus(data["status"]),
            retry_count=int(data.get("retry_count", 0)),
        )
