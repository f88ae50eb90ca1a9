"""Station inventory, the authoritative list of deployed stations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from radiostack.errors import ValidationError
from radiostack.inventory.base import HEADER, HEADER_LINE, InventoryStore, ValidationReport
from radiostack.inventory.csv_store import CsvInventoryStore
from radiostack.inventory.sqlite_store import SqliteInventoryStore

if TYPE_CHECKING:
    from radiostack.config import RadioStackConfig

logger = logging.getLogger(__name__)

_BACKENDS: dict[str, type[InventoryStore]] = {
    "csv": CsvInventoryStore,
    "sqlite": SqliteInventoryStore,
}


def open_store(config: RadioStackConfig) -> InventoryStore:
    """Return the inventory backend selected by *config*."""
    backend = (config.inventory_backend or "csv").lower()
    cls = _BACKENDS.get(backend)
    if cls is None:
        raise ValidationError(
            f"Unknown inventory backend: {backend}. Available: {', '.join(_BACKENDS)}"
        )
    logger.debug("Using %s inventory at %s", backend, config.inventory_file)
    return cls(
        config.inventory_file,
        backup_dir=config.backup_dir,
        keep=config.inventory_backup_keep,
    )


__all__ = [
    "HEADER",
    "HEADER_LINE",
    "CsvInventoryStore",
    "InventoryStore",
    "SqliteInventoryStore",
    "ValidationReport",
    "open_store",
]
