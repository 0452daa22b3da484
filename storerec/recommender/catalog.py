"""Product catalog adapters.

The engine only needs to know which products are currently sellable; the
catalog itself is owned by the storefront's product service.
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import FrozenSet, Iterable, Optional

import pandas as pd

# Configure module logger
logger = logging.getLogger(__name__)


class ProductCatalog(ABC):
    """Read access to the set of sellable product ids."""

    @abstractmethod
    def list_product_ids(self) -> FrozenSet[str]:
        """Return the ids of all currently sellable products."""
        ...

    def exists(self, product_id: str) -> bool:
        """Return True if the product is currently sellable."""
        return str(product_id) in self.list_product_ids()


class InMemoryProductCatalog(ProductCatalog):
    """Catalog held in process memory.

    The id set is replaced copy-on-write, so readers never take the lock.
    """

    def __init__(self, product_ids: Optional[Iterable] = None):
        self._lock = threading.Lock()
        self._product_ids: FrozenSet[str] = frozenset(
            str(pid) for pid in product_ids or ()
        )

    def list_product_ids(self) -> FrozenSet[str]:
        return self._product_ids

    def exists(self, product_id: str) -> bool:
        return str(product_id) in self._product_ids

    def add(self, *product_ids) -> None:
        with self._lock:
            self._product_ids = self._product_ids | {str(pid) for pid in product_ids}

    def remove(self, *product_ids) -> None:
        with self._lock:
            self._product_ids = self._product_ids - {str(pid) for pid in product_ids}

    def __len__(self) -> int:
        return len(self._product_ids)


class CsvProductCatalog(ProductCatalog):
    """Catalog read from a CSV file with a ``product_id`` column.

    The file is re-read only when its modification time changes.
    """

    def __init__(self, csv_path: str, id_column: str = "product_id"):
        self.csv_path = Path(csv_path)
        self.id_column = id_column
        self._lock = threading.Lock()
        self._mtime: Optional[float] = None
        self._product_ids: FrozenSet[str] = frozenset()

    def list_product_ids(self) -> FrozenSet[str]:
        if not self.csv_path.exists():
            raise FileNotFoundError(f"Catalog file not found: {self.csv_path}")

        mtime = self.csv_path.stat().st_mtime
        if mtime == self._mtime:
            return self._product_ids

        with self._lock:
            if mtime != self._mtime:
                df = pd.read_csv(self.csv_path, dtype={self.id_column: str})
                if self.id_column not in df.columns:
                    raise ValueError(
                        f"Catalog missing required column: {self.id_column}"
                    )
                self._product_ids = frozenset(
                    df[self.id_column].dropna().str.strip()
                )
                self._mtime = mtime
                logger.info(
                    "Loaded product catalog",
                    extra={
                        "path": str(self.csv_path),
                        "num_products": len(self._product_ids),
                    },
                )
        return self._product_ids
