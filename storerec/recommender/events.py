"""Event store adapters.

The interaction log is owned by the storefront's tracking collaborator. This
module defines the canonical ``Event`` shape the engine works with, the
normalization from the heterogeneous records the tracking side produces,
and two adapters over the log: an in-memory one and a CSV-backed one.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from storerec.exceptions import InvalidEventError

# Configure module logger
logger = logging.getLogger(__name__)

CSV_COLUMNS = ["user_id", "product_id", "type", "timestamp", "weight"]

_USER_KEYS = ("user_id", "userId", "user")
_PRODUCT_KEYS = ("product_id", "productId", "item_id", "itemId", "product")
_TYPE_KEYS = ("type", "event_type", "eventType", "action")
_TIMESTAMP_KEYS = ("timestamp", "ts", "time", "created_at")


class EventType(str, Enum):
    """Kinds of user interaction the engine understands."""

    VIEW = "view"
    CART_ADD = "cart_add"
    PURCHASE = "purchase"
    REMOVE = "remove"


_TYPE_ALIASES = {
    "view": EventType.VIEW,
    "click": EventType.VIEW,
    "cart_add": EventType.CART_ADD,
    "add_to_cart": EventType.CART_ADD,
    "addtocart": EventType.CART_ADD,
    "cart": EventType.CART_ADD,
    "purchase": EventType.PURCHASE,
    "buy": EventType.PURCHASE,
    "order": EventType.PURCHASE,
    "remove": EventType.REMOVE,
    "remove_from_cart": EventType.REMOVE,
}


@dataclass(frozen=True)
class Event:
    """One immutable user interaction.

    Attributes:
        user_id: Identifier of the interacting user.
        product_id: Identifier of the product interacted with.
        type: Kind of interaction.
        timestamp: Timezone-aware UTC time of the interaction.
        weight: Explicit weight overriding the per-type default, if any.
    """

    user_id: str
    product_id: str
    type: EventType
    timestamp: datetime
    weight: Optional[float] = None


def _first_present(record: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None and not (isinstance(value, float) and pd.isna(value)):
            return value
    return None


def _normalize_id(value: Any) -> str:
    # 42.0 read back from a CSV column with NaNs is the id "42"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_event_type(value: Union[str, EventType]) -> EventType:
    """Map a raw event type string to an ``EventType``.

    Raises:
        InvalidEventError: If the type is not recognised.
    """
    if isinstance(value, EventType):
        return value
    key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return _TYPE_ALIASES[key]
    except KeyError:
        raise InvalidEventError(f"unknown event type '{value}'") from None


def parse_timestamp(value: Any) -> datetime:
    """Convert a raw timestamp into a timezone-aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), pandas Timestamps,
    ISO-8601 strings (a trailing "Z" is allowed) and epoch seconds.

    Raises:
        InvalidEventError: If the value cannot be interpreted as a time.
    """
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidEventError(f"unparseable timestamp '{value}'") from None
    else:
        raise InvalidEventError(f"unsupported timestamp {value!r}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_event(record: Union[Event, Mapping[str, Any]]) -> Event:
    """Normalize a raw interaction record into a canonical ``Event``.

    Args:
        record: Either an ``Event`` (returned unchanged) or a mapping with
            user, product, type and timestamp fields. Field names may use the
            camelCase or alternative spellings emitted by the tracking API.

    Returns:
        Canonical event with string ids and a UTC timestamp.

    Raises:
        InvalidEventError: If a required field is missing or invalid.

    Example:
        >>> normalize_event({"userId": 7, "productId": "sku-1",
        ...                  "action": "ADD_TO_CART", "ts": "2024-05-01T10:00:00Z"})
        Event(user_id='7', product_id='sku-1', type=<EventType.CART_ADD: 'cart_add'>, ...)
    """
    if isinstance(record, Event):
        return record
    if not isinstance(record, Mapping):
        raise InvalidEventError("record must be a mapping", record)

    user_id = _first_present(record, _USER_KEYS)
    product_id = _first_present(record, _PRODUCT_KEYS)
    raw_type = _first_present(record, _TYPE_KEYS)
    raw_timestamp = _first_present(record, _TIMESTAMP_KEYS)

    if user_id is None or product_id is None:
        raise InvalidEventError("missing user or product id", record)
    if raw_type is None:
        raise InvalidEventError("missing event type", record)
    if raw_timestamp is None:
        raise InvalidEventError("missing timestamp", record)

    weight = record.get("weight")
    if weight is not None and isinstance(weight, float) and pd.isna(weight):
        weight = None
    if weight is not None:
        try:
            weight = float(weight)
        except (TypeError, ValueError):
            raise InvalidEventError(f"non-numeric weight {weight!r}", record) from None
        if weight < 0:
            raise InvalidEventError("weight must be non-negative", record)

    user_id = _normalize_id(user_id)
    product_id = _normalize_id(product_id)
    if not user_id or not product_id:
        raise InvalidEventError("empty user or product id", record)

    return Event(
        user_id=user_id,
        product_id=product_id,
        type=parse_event_type(raw_type),
        timestamp=parse_timestamp(raw_timestamp),
        weight=weight,
    )


class EventStore(ABC):
    """Read/append access to the interaction log."""

    @abstractmethod
    def list_events(self, since: Optional[datetime] = None) -> List[Event]:
        """Return events at or after ``since`` (all events when None)."""
        ...

    @abstractmethod
    def append(self, event: Union[Event, Mapping[str, Any]]) -> Event:
        """Normalize and append one event, returning the stored event."""
        ...


class InMemoryEventStore(EventStore):
    """Event log held in process memory."""

    def __init__(self, events: Optional[Iterable[Union[Event, Mapping[str, Any]]]] = None):
        self._lock = threading.Lock()
        self._events: List[Event] = [normalize_event(e) for e in events or ()]

    def list_events(self, since: Optional[datetime] = None) -> List[Event]:
        with self._lock:
            events = list(self._events)
        if since is None:
            return events
        since = parse_timestamp(since)
        return [e for e in events if e.timestamp >= since]

    def append(self, event: Union[Event, Mapping[str, Any]]) -> Event:
        normalized = normalize_event(event)
        with self._lock:
            self._events.append(normalized)
        return normalized

    def __len__(self) -> int:
        return len(self._events)


class CsvEventStore(EventStore):
    """Event log stored as a CSV file.

    The file has the columns ``user_id, product_id, type, timestamp, weight``
    (``weight`` may be empty). Rows that cannot be normalized are skipped
    with a warning so one bad record does not block a recompute.
    """

    def __init__(self, csv_path: str):
        self.csv_path = Path(csv_path)
        self._lock = threading.Lock()

    def list_events(self, since: Optional[datetime] = None) -> List[Event]:
        if not self.csv_path.exists():
            raise FileNotFoundError(f"Event log not found: {self.csv_path}")

        with self._lock:
            df = pd.read_csv(self.csv_path, dtype={"user_id": str, "product_id": str})

        logger.info(
            "Loaded event log",
            extra={"path": str(self.csv_path), "num_records": len(df)},
        )

        events: List[Event] = []
        skipped = 0
        for record in df.to_dict(orient="records"):
            try:
                events.append(normalize_event(record))
            except InvalidEventError as e:
                skipped += 1
                logger.debug(f"Skipping event record: {e.message}")

        if skipped:
            logger.warning(
                "Skipped invalid event records",
                extra={"path": str(self.csv_path), "skipped": skipped},
            )

        if since is not None:
            since = parse_timestamp(since)
            events = [e for e in events if e.timestamp >= since]
        return events

    def append(self, event: Union[Event, Mapping[str, Any]]) -> Event:
        normalized = normalize_event(event)
        row = events_to_frame([normalized])
        with self._lock:
            write_header = not self.csv_path.exists()
            if write_header:
                self.csv_path.parent.mkdir(parents=True, exist_ok=True)
            row.to_csv(self.csv_path, mode="a", header=write_header, index=False)
        return normalized


def events_to_frame(events: Iterable[Event]) -> pd.DataFrame:
    """Convert events to a DataFrame with the CSV column layout."""
    return pd.DataFrame(
        [
            {
                "user_id": e.user_id,
                "product_id": e.product_id,
                "type": e.type.value,
                "timestamp": e.timestamp.isoformat(),
                "weight": e.weight,
            }
            for e in events
        ],
        columns=CSV_COLUMNS,
    )
