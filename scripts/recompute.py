"""Command-line interface for running one recompute cycle.

Reads an event log and a product catalog from CSV, runs extraction, training
and publication once, and persists the resulting model snapshot so the API
(or ``predict_cli.py``) can serve it.

Example:
    Recompute with default settings:
        $ python scripts/recompute.py data/fake_events.csv data/catalog.csv

    Recompute with custom parameters:
        $ python scripts/recompute.py data/events.csv data/catalog.csv \\
            --output-dir models/production \\
            --half-life-days 7 \\
            --similarity jaccard
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from storerec.config import DEFAULT_HALF_LIFE_DAYS, DEFAULT_MAX_NEIGHBORS, EngineConfig
from storerec.recommender.catalog import CsvProductCatalog
from storerec.recommender.engine import build_engine
from storerec.recommender.events import CsvEventStore
from storerec.recommender.scheduler import CycleStatus


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the script.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Namespace object containing parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Run one recommendation recompute cycle from CSV data.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Recompute with default settings
  python scripts/recompute.py data/fake_events.csv data/catalog.csv

  # Recompute into a custom directory with a shorter decay
  python scripts/recompute.py data/events.csv data/catalog.csv --output-dir models/prod --half-life-days 7

  # Recompute with verbose logging
  python scripts/recompute.py data/events.csv data/catalog.csv --verbose
        """,
    )

    parser.add_argument(
        "events_csv",
        type=str,
        help="Path to CSV event log with columns: "
        "user_id, product_id, type, timestamp, weight",
    )

    parser.add_argument(
        "catalog_csv",
        type=str,
        help="Path to CSV catalog with a product_id column",
    )

    parser.add_argument(
        "--output-dir",
        type=str,
        default="models",
        help="Directory where the model snapshot will be saved (default: models)",
    )

    parser.add_argument(
        "--half-life-days",
        type=float,
        default=DEFAULT_HALF_LIFE_DAYS,
        help=f"Half-life of the event time decay in days (default: {DEFAULT_HALF_LIFE_DAYS})",
    )

    parser.add_argument(
        "--similarity",
        choices=["cosine", "jaccard"],
        default="cosine",
        help="Co-occurrence normalization (default: cosine)",
    )

    parser.add_argument(
        "--max-neighbors",
        type=int,
        default=DEFAULT_MAX_NEIGHBORS,
        help=f"Related products kept per product (default: {DEFAULT_MAX_NEIGHBORS})",
    )

    parser.add_argument(
        "--window-days",
        type=float,
        default=None,
        help="Only use events from the last N days (default: full log)",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args()


def validate_csv_path(csv_path: str) -> None:
    """Validate that the CSV file exists and is readable.

    Raises:
        FileNotFoundError: If CSV file does not exist.
        ValueError: If path is not a file.
    """
    path = Path(csv_path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {csv_path}")


def main() -> int:
    """Main entry point for the recompute script.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    try:
        args = parse_arguments()

        setup_logging(verbose=args.verbose)
        logger = logging.getLogger(__name__)

        validate_csv_path(args.events_csv)
        validate_csv_path(args.catalog_csv)

        config = EngineConfig(
            half_life_days=args.half_life_days,
            similarity=args.similarity,
            max_neighbors=args.max_neighbors,
            event_window_days=args.window_days,
            snapshot_dir=args.output_dir,
        )

        logger.info("=" * 70)
        logger.info("Recompute Configuration")
        logger.info("=" * 70)
        logger.info(f"Events:          {args.events_csv}")
        logger.info(f"Catalog:         {args.catalog_csv}")
        logger.info(f"Output directory: {args.output_dir}")
        logger.info(f"Half-life days:  {config.half_life_days}")
        logger.info(f"Similarity:      {config.similarity}")
        logger.info(f"Max neighbors:   {config.max_neighbors}")
        logger.info("=" * 70)

        engine = build_engine(
            config,
            event_store=CsvEventStore(args.events_csv),
            catalog=CsvProductCatalog(args.catalog_csv),
        )
        result = engine.scheduler.run_cycle()

        if result is None or result.status is not CycleStatus.PUBLISHED:
            reason = result.error if result is not None else "cycle did not run"
            logger.error(f"Recompute did not publish a model: {reason}")
            return 1

        snapshot = engine.snapshots.current
        logger.info("=" * 70)
        logger.info("Recompute Summary")
        logger.info("=" * 70)
        logger.info(f"Model version:     {snapshot.version}")
        logger.info(f"Events used:       {result.num_events}")
        logger.info(f"Number of users:   {snapshot.num_users}")
        logger.info(f"Number of products: {snapshot.num_products}")
        logger.info(f"Duration:          {result.duration_ms} ms")
        logger.info(f"Snapshot saved to: {Path(args.output_dir).absolute()}")
        logger.info("=" * 70)

        return 0

    except FileNotFoundError as e:
        logging.error(f"File error: {e}")
        return 1
    except ValueError as e:
        logging.error(f"Validation error: {e}")
        return 1
    except KeyboardInterrupt:
        logging.warning("Recompute interrupted by user")
        return 130
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
