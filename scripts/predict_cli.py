"""CLI script for getting product recommendations.

Useful for testing and evaluation. Loads a persisted model snapshot, gets
recommendations for a user and prints them to the console.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from storerec.config import EngineConfig
from storerec.recommender.catalog import CsvProductCatalog, InMemoryProductCatalog
from storerec.recommender.engine import build_engine
from storerec.recommender.events import InMemoryEventStore
from storerec.recommender.snapshots import load_snapshot

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Get product recommendations for a user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/predict_cli.py u42
  python scripts/predict_cli.py u42 --k 5
  python scripts/predict_cli.py u42 --catalog data/catalog.csv
  python scripts/predict_cli.py u42 --explain
        """
    )

    parser.add_argument(
        "user_id",
        type=str,
        help="User ID to get recommendations for"
    )

    parser.add_argument(
        "--k",
        type=int,
        default=10,
        help="Number of recommendations to return (default: 10)"
    )

    parser.add_argument(
        "--model-dir",
        type=str,
        default="models",
        help="Directory containing the model snapshot (default: models)"
    )

    parser.add_argument(
        "--catalog",
        type=str,
        default=None,
        help="Catalog CSV restricting recommendations to sellable products "
        "(default: every product known to the model)"
    )

    parser.add_argument(
        "--explain",
        action="store_true",
        help="Show the user's history and related products"
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        snapshot = load_snapshot(args.model_dir)
        if args.catalog:
            catalog = CsvProductCatalog(args.catalog)
        else:
            catalog = InMemoryProductCatalog(snapshot.popularity)

        engine = build_engine(
            EngineConfig(max_k=max(args.k, 1), default_k=max(args.k, 1)),
            event_store=InMemoryEventStore(),
            catalog=catalog,
        )
        engine.scheduler.restore(snapshot)
        result = engine.recommend(args.user_id, args.k)
    except FileNotFoundError as e:
        print(f"Error: Model not found in {args.model_dir}", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    mode = "personalized" if result.personalized else "popularity fallback"
    print(f"\nRecommendations for user {args.user_id} "
          f"(model v{result.model_version}, {mode}):")
    print(f"  Top {len(result.product_ids)} products: {result.product_ids}")

    if args.explain:
        history = snapshot.user_items.get(args.user_id, ())
        purchased = sorted(snapshot.purchased.get(args.user_id, ()))
        print(f"\nHistory: {list(history)}")
        print(f"Purchased: {purchased}")
        for product_id in history:
            related = [f"{pid} ({score:.3f})" for pid, score in snapshot.related(product_id, 5)]
            print(f"  {product_id} -> {', '.join(related) or 'no related products'}")

    print()


if __name__ == "__main__":
    main()
