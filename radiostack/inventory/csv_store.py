"""Tabular-file inventory backend.

File layout (one header row, one row per station)::

    CTID,Type,Hostname,IP,Description,Created,Status
    340,azuracast,azuracast-main,192.168.2.140,"Station: main",2025-01-10,active

Every mutation is backup → write temp file in the same directory → atomic
rename, so readers never observe a partial file.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable

from radiostack.errors import StoreIOError, ValidationError
from radiostack.inventory.base import (
    DEFAULT_BACKUP_KEEP,
    HEADER,
    HEADER_LINE,
    InventoryStore,
    LivePredicate,
    ValidationReport,
    find_duplicates,
)
from radiostack.models import Platform, StationRecord

logger = logging.getLogger(__name__)

_DESCRIPTION_FIELD = 4


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def format_fields(fields: list[str]) -> str:
    """Serialize one row; the description column is always quoted."""
    out = []
    for i, value in enumerate(fields):
        if i == _DESCRIPTION_FIELD or any(c in value for c in ',"\r\n'):
            out.append(_quote(value))
        else:
            out.append(value)
    return ",".join(out)


def record_fields(record: StationRecord) -> list[str]:
    return [
        str(record.id),
        record.platform.value,
        record.hostname,
        record.address,
        record.description,
        record.created.isoformat(),
        record.status.value,
    ]


def parse_row(fields: list[str]) -> StationRecord:
    if len(fields) != len(HEADER):
        raise ValidationError(f"expected {len(HEADER)} fields, got {len(fields)}")
    ctid, platform, hostname, address, description, created, status = fields
    return StationRecord(
        id=ctid,
        platform=platform,
        hostname=hostname,
        address=address,
        description=description,
        created=created,
        status=status,
    )


class CsvInventoryStore(InventoryStore):
    """Inventory kept in a comma-delimited file with a fixed header."""

    def __init__(
        self,
        path: str | Path,
        backup_dir: str | Path | None = None,
        keep: int = DEFAULT_BACKUP_KEEP,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.path = Path(path)
        super().__init__(backup_dir or self.path.parent / "backups", keep=keep, clock=clock)

    # ── File primitives ───────────────────────────────────────────

    def init(self) -> None:
        """Create the inventory directory and header-only file if missing."""
        if self.path.exists():
            return
        logger.info("Creating inventory file: %s", self.path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreIOError(f"Cannot create inventory directory: {exc}") from exc
        self._write(HEADER_LINE, [])

    def _exists(self) -> bool:
        return self.path.exists()

    def _read(self) -> tuple[str, list[list[str]]]:
        """Return ``(header_line, data_rows)``; a missing file reads as empty."""
        if not self.path.exists():
            return HEADER_LINE, []
        try:
            with open(self.path, encoding="utf-8", newline="") as f:
                text = f.read()
        except OSError as exc:
            raise StoreIOError(f"Cannot read inventory {self.path}: {exc}") from exc
        if not text.strip():
            return "", []
        header_line, _, body = text.partition("\n")
        rows = [row for row in csv.reader(io.StringIO(body)) if row and any(f.strip() for f in row)]
        return header_line.rstrip("\r"), rows

    def _read_checked(self) -> list[list[str]]:
        header, rows = self._read()
        if header != HEADER_LINE:
            raise StoreIOError(f"Invalid inventory header in {self.path}: {header!r}")
        return rows

    def _write(self, header: str, rows: list[list[str]]) -> None:
        lines = [header] + [format_fields(r) for r in rows]
        content = "\n".join(lines) + "\n"
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise StoreIOError(f"Cannot write inventory {self.path}: {exc}") from exc
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def _snapshot(self, destination: Path) -> None:
        shutil.copy2(self.path, destination)

    # ── CRUD ──────────────────────────────────────────────────────

    def list(self, platform: Platform | str | None = None) -> list[StationRecord]:
        wanted = Platform.parse(platform) if platform else None
        records: list[StationRecord] = []
        for fields in self._read_checked():
            try:
                record = parse_row(fields)
            except ValidationError as exc:
                logger.warning("Skipping malformed inventory row %r: %s", fields, exc)
                continue
            if wanted is None or record.platform == wanted:
                records.append(record)
        return records

    def upsert(self, record: StationRecord) -> None:
        self.init()
        rows = self._read_checked()
        self.backup()

        key = str(record.id)
        updated: list[list[str]] = []
        replaced = False
        for fields in rows:
            if fields[0].strip() != key:
                updated.append(fields)
            elif not replaced:
                # Replace in place keeping the original creation date;
                # later rows with the same id are dropped.
                new_fields = record_fields(record)
                if len(fields) == len(HEADER) and fields[5].strip():
                    new_fields[5] = fields[5].strip()
                updated.append(new_fields)
                replaced = True
        if not replaced:
            updated.append(record_fields(record))

        self._write(HEADER_LINE, updated)
        if replaced:
            logger.info("Station %d already exists in inventory, updated", record.id)
        else:
            logger.info("Added to inventory: %s (CTID: %d)", record.hostname, record.id)

    def remove(self, station_id: int) -> bool:
        if not self.path.exists():
            return False
        rows = self._read_checked()
        key = str(int(station_id))
        kept = [r for r in rows if r[0].strip() != key]
        if len(kept) == len(rows):
            logger.debug("Station %s not found in inventory", key)
            return False
        self.backup()
        self._write(HEADER_LINE, kept)
        logger.info("Removed from inventory: CTID %s", key)
        return True

    # ── Consistency ───────────────────────────────────────────────

    def validate(self, is_live: LivePredicate | None = None) -> ValidationReport:
        report = ValidationReport()
        if not self.path.exists():
            return report
        header, rows = self._read()
        report.header_found = header
        report.header_ok = header == HEADER_LINE

        ids: list[int] = []
        for fields in rows:
            try:
                record = parse_row(fields)
            except ValidationError:
                report.malformed_rows.append(format_fields(fields))
                continue
            ids.append(record.id)

        report.duplicate_ids = find_duplicates(ids)
        if is_live is not None:
            report.orphaned_ids = [i for i in dict.fromkeys(ids) if not is_live(i)]
            for orphan in report.orphaned_ids:
                logger.warning("Orphaned entry (container doesn't exist): CTID %d", orphan)
        return report

    def reconcile(self, is_live: LivePredicate) -> list[int]:
        if not self.path.exists():
            return []
        header, rows = self._read()
        kept: list[list[str]] = []
        removed: list[int] = []
        for fields in rows:
            key = fields[0].strip()
            if key.isdigit() and not is_live(int(key)):
                logger.warning("Removing orphaned entry: CTID %s", key)
                removed.append(int(key))
            else:
                kept.append(fields)
        if not removed:
            logger.info("No orphaned entries found")
            return []
        self.backup()
        self._write(header, kept)
        logger.info("Removed %d orphaned entries", len(removed))
        return removed
