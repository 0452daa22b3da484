"""Tests for event normalization and the event store adapters."""

from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from storerec.exceptions import InvalidEventError
from storerec.recommender.catalog import CsvProductCatalog, InMemoryProductCatalog
from storerec.recommender.events import (
    CSV_COLUMNS,
    CsvEventStore,
    Event,
    EventType,
    InMemoryEventStore,
    events_to_frame,
    normalize_event,
    parse_timestamp,
)


def test_normalize_event_accepts_camel_case_and_aliases():
    """Records from the tracking API use camelCase keys and loose type names."""
    event = normalize_event({
        "userId": 7,
        "productId": "sku-1",
        "action": "ADD_TO_CART",
        "ts": "2024-05-01T10:00:00Z",
    })

    assert event == Event(
        user_id="7",
        product_id="sku-1",
        type=EventType.CART_ADD,
        timestamp=datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
        weight=None,
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("view", EventType.VIEW),
        ("click", EventType.VIEW),
        ("add-to-cart", EventType.CART_ADD),
        ("Purchase", EventType.PURCHASE),
        ("buy", EventType.PURCHASE),
        ("remove_from_cart", EventType.REMOVE),
    ],
)
def test_normalize_event_type_aliases(raw, expected):
    event = normalize_event(
        {"user_id": "u", "product_id": "p", "type": raw, "timestamp": 0}
    )
    assert event.type is expected


def test_parse_timestamp_variants():
    """Naive datetimes, epoch seconds and offsets all end up in UTC."""
    expected = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert parse_timestamp(datetime(2024, 1, 1)) == expected
    assert parse_timestamp(expected.timestamp()) == expected
    assert parse_timestamp("2024-01-01T02:00:00+02:00") == expected
    assert parse_timestamp(pd.Timestamp("2024-01-01", tz="UTC")) == expected
    assert parse_timestamp("2024-01-01T00:00:00Z").tzinfo == timezone.utc


@pytest.mark.parametrize(
    "record",
    [
        {"product_id": "p", "type": "view", "timestamp": 0},
        {"user_id": "u", "type": "view", "timestamp": 0},
        {"user_id": "u", "product_id": "p", "timestamp": 0},
        {"user_id": "u", "product_id": "p", "type": "view"},
        {"user_id": "u", "product_id": "p", "type": "wishlist", "timestamp": 0},
        {"user_id": "u", "product_id": "p", "type": "view", "timestamp": "yesterday"},
        {"user_id": "u", "product_id": "p", "type": "view", "timestamp": 0, "weight": -1},
    ],
)
def test_normalize_event_rejects_invalid_records(record):
    with pytest.raises(InvalidEventError):
        normalize_event(record)


def test_invalid_event_error_is_value_error():
    with pytest.raises(ValueError):
        normalize_event({"user_id": "u"})


def test_event_is_immutable():
    event = normalize_event({"user_id": "u", "product_id": "p", "type": "view", "timestamp": 0})
    with pytest.raises(AttributeError):
        event.weight = 3.0


def test_in_memory_store_since_filter():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    store = InMemoryEventStore()
    store.append({"user_id": "u1", "product_id": "p1", "type": "view", "timestamp": now - timedelta(days=10)})
    store.append({"user_id": "u1", "product_id": "p2", "type": "purchase", "timestamp": now})

    assert len(store.list_events()) == 2
    recent = store.list_events(since=now - timedelta(days=1))
    assert [e.product_id for e in recent] == ["p2"]


def test_csv_store_append_and_list_roundtrip(tmp_path):
    store = CsvEventStore(str(tmp_path / "events.csv"))
    stored = store.append({
        "user_id": "u1",
        "product_id": "p1",
        "type": "purchase",
        "timestamp": "2024-06-01T12:00:00Z",
        "weight": 2.5,
    })
    store.append({
        "user_id": "u2",
        "product_id": "p1",
        "type": "view",
        "timestamp": "2024-06-01T13:00:00Z",
    })

    events = store.list_events()

    assert events[0] == stored
    assert events[1].weight is None
    assert events[1].type is EventType.VIEW


def test_csv_store_skips_invalid_rows(tmp_path):
    csv_path = tmp_path / "events.csv"
    pd.DataFrame([
        {"user_id": "u1", "product_id": "p1", "type": "view", "timestamp": "2024-06-01T12:00:00Z"},
        {"user_id": "u1", "product_id": "p2", "type": "teleport", "timestamp": "2024-06-01T12:00:00Z"},
    ]).to_csv(csv_path, index=False)

    events = CsvEventStore(str(csv_path)).list_events()

    assert [e.product_id for e in events] == ["p1"]


def test_csv_store_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        CsvEventStore(str(tmp_path / "missing.csv")).list_events()


def test_in_memory_catalog_add_remove():
    catalog = InMemoryProductCatalog(["p1", 2])

    assert catalog.exists("2")
    catalog.add("p3")
    catalog.remove("p1")

    assert catalog.list_product_ids() == frozenset({"2", "p3"})
    assert not catalog.exists("p1")


def test_csv_catalog_reads_product_ids(tmp_path):
    csv_path = tmp_path / "catalog.csv"
    pd.DataFrame({"product_id": ["p1", "p2", "p3"]}).to_csv(csv_path, index=False)

    catalog = CsvProductCatalog(str(csv_path))

    assert catalog.list_product_ids() == frozenset({"p1", "p2", "p3"})
    assert catalog.exists("p2")
    assert not catalog.exists("p9")


def test_events_to_frame_uses_csv_layout():
    events = [
        normalize_event({"user_id": "u1", "product_id": "p1", "type": "buy", "timestamp": 0}),
        normalize_event(
            {"user_id": "u2", "product_id": "p2", "type": "view", "timestamp": 0, "weight": 2}
        ),
    ]

    df = events_to_frame(events)

    assert list(df.columns) == CSV_COLUMNS
    assert list(df["type"]) == ["purchase", "view"]
    assert df["timestamp"].iloc[0] == "1970-01-01T00:00:00+00:00"
    assert pd.isna(df["weight"].iloc[0])
    assert df["weight"].iloc[1] == 2.0
