"""Abstract inventory store interface.

Both backends (tabular file and SQLite) implement :class:`InventoryStore`;
everything above the store only talks to this interface.
"""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable

from radiostack.errors import NotFoundError, StoreIOError
from radiostack.models import Platform, StationRecord, StationStatus

logger = logging.getLogger(__name__)

HEADER = ("CTID", "Type", "Hostname", "IP", "Description", "Created", "Status")
HEADER_LINE = ",".join(HEADER)

DEFAULT_BACKUP_KEEP = 10

LivePredicate = Callable[[int], bool]


@dataclass
class ValidationReport:
    """Violations found by :meth:`InventoryStore.validate`. ``ok`` ignores orphans."""

    header_ok: bool = True
    header_found: str = ""
    duplicate_ids: list[int] = field(default_factory=list)
    orphaned_ids: list[int] = field(default_factory=list)
    malformed_rows: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.header_ok and not self.duplicate_ids and not self.malformed_rows

    @property
    def issues(self) -> int:
        return (0 if self.header_ok else 1) + (1 if self.duplicate_ids else 0) + len(self.malformed_rows)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "header_ok": self.header_ok,
            "header_found": self.header_found,
            "duplicate_ids": self.duplicate_ids,
            "orphaned_ids": self.orphaned_ids,
            "malformed_rows": self.malformed_rows,
        }


class InventoryStore(abc.ABC):
    """Durable CRUD over station records with backup and consistency checks."""

    def __init__(
        self,
        backup_dir: str | Path,
        keep: int = DEFAULT_BACKUP_KEEP,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.backup_dir = Path(backup_dir)
        self.keep = keep
        self._clock = clock

    # ── Abstract storage primitives ───────────────────────────────

    @abc.abstractmethod
    def list(self, platform: Platform | str | None = None) -> list[StationRecord]:
        """All records in insertion order, optionally filtered by platform."""
        raise NotImplementedError

    @abc.abstractmethod
    def upsert(self, record: StationRecord) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def remove(self, station_id: int) -> bool:
        """Delete *station_id*. Returns ``False`` (not an error) when absent."""
        raise NotImplementedError

    @abc.abstractmethod
    def validate(self, is_live: LivePredicate | None = None) -> ValidationReport:
        raise NotImplementedError

    @abc.abstractmethod
    def reconcile(self, is_live: LivePredicate) -> list[int]:
        raise NotImplementedError

    @abc.abstractmethod
    def _snapshot(self, destination: Path) -> None:
        """Copy the current store state to *destination*."""
        raise NotImplementedError

    @abc.abstractmethod
    def _exists(self) -> bool:
        raise NotImplementedError

    backup_prefix = "stations-"
    backup_suffix = ".csv"

    # ── Shared operations ─────────────────────────────────────────

    def get(self, station_id: int) -> StationRecord:
        for record in self.list():
            if record.id == int(station_id):
                return record
        raise NotFoundError(f"Station {station_id} not found in inventory")

    def contains(self, station_id: int) -> bool:
        try:
            self.get(station_id)
        except NotFoundError:
            return False
        return True

    def count(self, platform: Platform | str | None = None) -> int:
        return len(self.list(platform))

    def update_status(self, station_id: int, status: StationStatus | str) -> StationRecord:
        record = self.get(station_id)
        record.status = StationStatus.parse(status)
        self.upsert(record)
        logger.info("Updated status for station %d to: %s", record.id, record.status.value)
        return record

    def export_json(self, path: str | Path) -> Path:
        path = Path(path)
        payload = {"stations": [r.to_dict() for r in self.list()]}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2) + "\n")
        except OSError as exc:
            raise StoreIOError(f"Cannot export inventory to {path}: {exc}") from exc
        logger.info("Inventory exported to %s", path)
        return path

    # ── Backups ───────────────────────────────────────────────────

    def backup(self) -> Path | None:
        """Snapshot the store into the backup directory and prune old copies.

        Best effort: failures are logged and ``None`` is returned.
        """
        if not self._exists():
            return None
        ts = self._clock().strftime("%Y%m%d-%H%M%S-%f")
        target = self.backup_dir / f"{self.backup_prefix}{ts}{self.backup_suffix}"
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            self._snapshot(target)
        except Exception as exc:
            logger.warning("Inventory backup failed (continuing): %s", exc)
            return None
        self._prune_backups()
        logger.debug("Inventory backup written: %s", target.name)
        return target

    def list_backups(self) -> list[Path]:
        """Backup files, newest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(
            self.backup_dir.glob(f"{self.backup_prefix}*{self.backup_suffix}"),
            key=lambda p: p.name,
            reverse=True,
        )

    def _prune_backups(self) -> None:
        for old in self.list_backups()[self.keep:]:
            try:
                old.unlink()
            except OSError as exc:
                logger.warning("Could not prune backup %s: %s", old.name, exc)


def find_duplicates(ids: list[int]) -> list[int]:
    seen: set[int] = set()
    dupes: list[int] = []
    for station_id in ids:
        if station_id in seen and station_id not in dupes:
            dupes.append(station_id)
        seen.add(station_id)
    return dupes
