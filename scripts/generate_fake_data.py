"""Generate fake interaction events and a product catalog for development.

This module creates synthetic storefront data for exercising the
recommendation engine: an event log CSV with views, cart-adds, removals and
purchases, and a catalog CSV listing the sellable products.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_events
        df = generate_fake_events(num_users=100, num_products=200)
"""

import argparse
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_PRODUCTS = 100
DEFAULT_NUM_EVENTS = 2000
DEFAULT_DAYS_BACK = 90
DEFAULT_SEED = 42
SECONDS_PER_DAY = 86400

# Relative frequency of each event type
EVENT_TYPE_WEIGHTS = {
    "view": 0.70,
    "cart_add": 0.15,
    "remove": 0.03,
    "purchase": 0.12,
}


def generate_fake_events(
    num_users: int = DEFAULT_NUM_USERS,
    num_products: int = DEFAULT_NUM_PRODUCTS,
    num_events: int = DEFAULT_NUM_EVENTS,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    seed: Optional[int] = DEFAULT_SEED,
) -> pd.DataFrame:
    """Generate a synthetic interaction event log.

    Each user gets a small set of favourite product "segments" so the data
    contains real co-occurrence structure for the model to find.

    Args:
        num_users: Number of unique users to simulate. Must be positive.
        num_products: Number of unique products available. Must be positive.
        num_events: Total number of events to generate. Must be positive.
        start_date: Start of the event time range (default: 90 days ago).
        end_date: End of the event time range (default: now).
        seed: Random seed for reproducibility, None for a random run.

    Returns:
        DataFrame with columns user_id, product_id, type, timestamp, weight,
        sorted by timestamp. ``weight`` is always empty so type defaults
        apply.

    Raises:
        ValueError: If any numeric parameter is non-positive or if
            start_date is not before end_date.
    """
    if num_users <= 0 or num_products <= 0 or num_events <= 0:
        raise ValueError("num_users, num_products, and num_events must be positive")

    if end_date is None:
        end_date = datetime.now(timezone.utc)
    if start_date is None:
        start_date = end_date - timedelta(days=DEFAULT_DAYS_BACK)
    if start_date >= end_date:
        raise ValueError("start_date must be before end_date")

    rng = random.Random(seed)

    # Products are grouped into segments; users mostly browse two of them
    segment_size = max(1, num_products // 10)
    segments = [
        list(range(start, min(start + segment_size, num_products + 1)))
        for start in range(1, num_products + 1, segment_size)
    ]
    favourites = {
        user_id: rng.sample(segments, k=min(2, len(segments)))
        for user_id in range(1, num_users + 1)
    }

    event_types = list(EVENT_TYPE_WEIGHTS)
    type_weights = list(EVENT_TYPE_WEIGHTS.values())
    total_seconds = int((end_date - start_date).total_seconds())

    events = []
    for _ in range(num_events):
        user_id = rng.randint(1, num_users)
        if rng.random() < 0.8:
            product_id = rng.choice(rng.choice(favourites[user_id]))
        else:
            product_id = rng.randint(1, num_products)

        timestamp = start_date + timedelta(seconds=rng.randrange(total_seconds))
        events.append({
            "user_id": f"u{user_id}",
            "product_id": f"p{product_id}",
            "type": rng.choices(event_types, weights=type_weights)[0],
            "timestamp": timestamp.isoformat(),
            "weight": None,
        })

    df = pd.DataFrame(events)
    df = df.sort_values("timestamp").reset_index(drop=True)

    return df


def generate_catalog(num_products: int = DEFAULT_NUM_PRODUCTS) -> pd.DataFrame:
    """Catalog DataFrame listing products p1..pN."""
    return pd.DataFrame({"product_id": [f"p{i}" for i in range(1, num_products + 1)]})


def main() -> None:
    """Generate the event log and catalog and save them under data/."""
    parser = argparse.ArgumentParser(description="Generate fake storefront events.")
    parser.add_argument("--num-users", type=int, default=DEFAULT_NUM_USERS)
    parser.add_argument("--num-products", type=int, default=DEFAULT_NUM_PRODUCTS)
    parser.add_argument("--num-events", type=int, default=DEFAULT_NUM_EVENTS)
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED)
    parser.add_argument(
        "--output-dir",
        type=str,
        default=str(Path(__file__).parent.parent / "data"),
        help="Directory for fake_events.csv and catalog.csv (default: data/)",
    )
    args = parser.parse_args()

    print(f"Generating {args.num_events} fake events...")
    print(f"Users: {args.num_users}, Products: {args.num_products}")

    try:
        df = generate_fake_events(
            num_users=args.num_users,
            num_products=args.num_products,
            num_events=args.num_events,
            seed=args.seed,
        )
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    data_dir = Path(args.output_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    events_path = data_dir / "fake_events.csv"
    catalog_path = data_dir / "catalog.csv"
    df.to_csv(events_path, index=False)
    generate_catalog(args.num_products).to_csv(catalog_path, index=False)

    print(f"\nData generated successfully!")
    print(f"Events saved to:  {events_path}")
    print(f"Catalog saved to: {catalog_path}")
    print(f"\nData preview:")
    print(df.head(10))
    print(f"\nData summary:")
    print(f"  Total events: {len(df)}")
    print(f"  Unique users: {df['user_id'].nunique()}")
    print(f"  Unique products: {df['product_id'].nunique()}")
    print(f"  Events by type: {df['type'].value_counts().to_dict()}")
    print(f"  Date range: {df['timestamp'].min()} to {df['timestamp'].max()}")


if __name__ == "__main__":
    main()
