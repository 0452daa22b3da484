"""Model snapshot storage.

This module holds the single "current" model snapshot for the serving path
and provides helpers to persist snapshots to disk and load them back, so a
restarted service can serve the last published model before its first
recompute finishes.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

import joblib

from storerec.exceptions import SnapshotNotFoundError
from storerec.recommender.model import ModelSnapshot

# Configure module logger
logger = logging.getLogger(__name__)

# Snapshot artifact filename
SNAPSHOT_FILENAME = "model_snapshot.joblib"


class SnapshotStore:
    """Holds the current ModelSnapshot.

    Readers access ``current`` without locking; ``publish`` replaces the
    reference in a single assignment, so a reader sees either the old or the
    new snapshot, never a mix.
    """

    def __init__(self, snapshot: Optional[ModelSnapshot] = None):
        self._lock = threading.Lock()
        self._current: Optional[ModelSnapshot] = snapshot

    @property
    def current(self) -> Optional[ModelSnapshot]:
        return self._current

    @property
    def version(self) -> Optional[int]:
        snapshot = self._current
        return snapshot.version if snapshot is not None else None

    def next_version(self) -> int:
        snapshot = self._current
        return 1 if snapshot is None else snapshot.version + 1

    def publish(self, snapshot: ModelSnapshot) -> None:
        """Make ``snapshot`` the current one.

        Raises:
            ValueError: If the snapshot does not advance the model version.
        """
        with self._lock:
            current = self._current
            if current is not None and snapshot.version <= current.version:
                raise ValueError(
                    f"Snapshot version {snapshot.version} does not advance "
                    f"current version {current.version}"
                )
            self._current = snapshot

        logger.info(
            "Published model snapshot",
            extra={
                "model_version": snapshot.version,
                "generated_at": snapshot.generated_at.isoformat(),
            },
        )


def save_snapshot(
    snapshot: ModelSnapshot,
    output_dir: str,
    filename: str = SNAPSHOT_FILENAME,
) -> Path:
    """Save a model snapshot to disk.

    The snapshot is written to a temporary file first and renamed into
    place, so a concurrent ``load_snapshot`` never reads a partial file.

    Args:
        snapshot: Snapshot to save.
        output_dir: Directory where the artifact will be saved.
        filename: Artifact filename (default: "model_snapshot.joblib").

    Returns:
        Path of the saved artifact.

    Raises:
        OSError: If unable to create the directory or write the file.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    snapshot_path = output_path / filename
    tmp_path = output_path / f".{filename}.tmp"

    joblib.dump(snapshot, tmp_path)
    tmp_path.replace(snapshot_path)

    logger.info(
        f"Saved model snapshot v{snapshot.version} to {snapshot_path}"
    )
    return snapshot_path


def load_snapshot(model_dir: str, filename: str = SNAPSHOT_FILENAME) -> ModelSnapshot:
    """Load a model snapshot from disk.

    Args:
        model_dir: Directory where the artifact is stored.
        filename: Artifact filename (default: "model_snapshot.joblib").

    Returns:
        The loaded ModelSnapshot.

    Raises:
        SnapshotNotFoundError: If the artifact does not exist.
        TypeError: If the file does not contain a ModelSnapshot.
    """
    snapshot_path = Path(model_dir) / filename
    if not snapshot_path.exists():
        raise SnapshotNotFoundError(model_dir)

    snapshot = joblib.load(snapshot_path)
    if not isinstance(snapshot, ModelSnapshot):
        raise TypeError(
            f"{snapshot_path} does not contain a ModelSnapshot "
            f"(found {type(snapshot).__name__})"
        )

    logger.info(f"Loaded model snapshot from {snapshot_path}")
    logger.info(f"Model version: {snapshot.version}")
    logger.info(f"Number of users: {snapshot.num_users}")
    logger.info(f"Number of products: {snapshot.num_products}")

    return snapshot


def snapshot_exists(model_dir: str, filename: str = SNAPSHOT_FILENAME) -> bool:
    """Check if a persisted snapshot exists in ``model_dir``."""
    return (Path(model_dir) / filename).exists()
