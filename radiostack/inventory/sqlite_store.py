"""SQLite inventory backend.

Same interface as :class:`~radiostack.inventory.csv_store.CsvInventoryStore`
but with a real database underneath, for setups that want stronger
guarantees against concurrent writers. Row order follows ``rowid`` so
``list()`` keeps insertion order; a re-registered station keeps its row.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable

from radiostack.errors import StoreIOError, ValidationError
from radiostack.inventory.base import (
    DEFAULT_BACKUP_KEEP,
    InventoryStore,
    LivePredicate,
    ValidationReport,
)
from radiostack.models import Platform, StationRecord

logger = logging.getLogger(__name__)

_COLUMNS = ("id", "platform", "hostname", "address", "description", "created", "status")

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS stations (
    id           INTEGER PRIMARY KEY,
    platform     TEXT NOT NULL,
    hostname     TEXT NOT NULL,
    address      TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    created      TEXT NOT NULL,
    status       TEXT NOT NULL DEFAULT 'active'
);
CREATE INDEX IF NOT EXISTS idx_stations_platform ON stations(platform);
"""


def _row_to_record(row: sqlite3.Row) -> StationRecord:
    return StationRecord(
        id=row["id"],
        platform=row["platform"],
        hostname=row["hostname"],
        address=row["address"],
        description=row["description"],
        created=row["created"],
        status=row["status"],
    )


class SqliteInventoryStore(InventoryStore):
    """Inventory kept in an SQLite database (WAL mode)."""

    backup_suffix = ".db"

    def __init__(
        self,
        path: str | Path,
        backup_dir: str | Path | None = None,
        keep: int = DEFAULT_BACKUP_KEEP,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.path = Path(path)
        super().__init__(backup_dir or self.path.parent / "backups", keep=keep, clock=clock)
        self._conn: sqlite3.Connection | None = None

    # ── Connection ────────────────────────────────────────────────

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.path), check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(_SCHEMA_SQL)
                conn.commit()
            except (OSError, sqlite3.Error) as exc:
                raise StoreIOError(f"Cannot open inventory database {self.path}: {exc}") from exc
            self._conn = conn
        return self._conn

    def init(self) -> None:
        self._db()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _exists(self) -> bool:
        return self.path.exists()

    def _snapshot(self, destination: Path) -> None:
        dest = sqlite3.connect(str(destination))
        try:
            self._db().backup(dest)
        finally:
            dest.close()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            cur = self._db().execute(sql, params)
            self._db().commit()
        except sqlite3.Error as exc:
            raise StoreIOError(f"Inventory database error: {exc}") from exc
        return cur

    # ── CRUD ──────────────────────────────────────────────────────

    def list(self, platform: Platform | str | None = None) -> list[StationRecord]:
        if platform:
            rows = self._execute(
                "SELECT * FROM stations WHERE platform = ? ORDER BY rowid",
                (Platform.parse(platform).value,),
            ).fetchall()
        else:
            rows = self._execute("SELECT * FROM stations ORDER BY rowid").fetchall()

        records: list[StationRecord] = []
        for row in rows:
            try:
                records.append(_row_to_record(row))
            except ValidationError as exc:
                logger.warning("Skipping malformed inventory row %s: %s", row["id"], exc)
        return records

    def upsert(self, record: StationRecord) -> None:
        self.init()
        self.backup()
        existed = self._execute(
            "SELECT 1 FROM stations WHERE id = ?", (record.id,)
        ).fetchone() is not None
        # created is left untouched on conflict
        self._execute(
            """
            INSERT INTO stations (id, platform, hostname, address, description, created, status)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                platform    = excluded.platform,
                hostname    = excluded.hostname,
                address     = excluded.address,
                description = excluded.description,
                status      = excluded.status
            """,
            (
                record.id,
                record.platform.value,
                record.hostname,
                record.address,
                record.description,
                record.created.isoformat(),
                record.status.value,
            ),
        )
        if existed:
            logger.info("Station %d already exists in inventory, updated", record.id)
        else:
            logger.info("Added to inventory: %s (CTID: %d)", record.hostname, record.id)

    def remove(self, station_id: int) -> bool:
        if not self.path.exists():
            return False
        station_id = int(station_id)
        if self._execute("SELECT 1 FROM stations WHERE id = ?", (station_id,)).fetchone() is None:
            logger.debug("Station %d not found in inventory", station_id)
            return False
        self.backup()
        self._execute("DELETE FROM stations WHERE id = ?", (station_id,))
        logger.info("Removed from inventory: CTID %d", station_id)
        return True

    # ── Consistency ───────────────────────────────────────────────

    def validate(self, is_live: LivePredicate | None = None) -> ValidationReport:
        report = ValidationReport()
        if not self.path.exists():
            return report
        columns = tuple(
            row["name"] for row in self._execute("PRAGMA table_info(stations)").fetchall()
        )
        report.header_found = ",".join(columns)
        report.header_ok = columns == _COLUMNS

        ids: list[int] = []
        for row in self._execute("SELECT * FROM stations ORDER BY rowid").fetchall():
            try:
                ids.append(_row_to_record(row).id)
            except ValidationError:
                report.malformed_rows.append(",".join(str(row[c]) for c in row.keys()))

        # The primary key already rules out duplicate ids.
        if is_live is not None:
            report.orphaned_ids = [i for i in ids if not is_live(i)]
            for orphan in report.orphaned_ids:
                logger.warning("Orphaned entry (container doesn't exist): CTID %d", orphan)
        return report

    def reconcile(self, is_live: LivePredicate) -> list[int]:
        if not self.path.exists():
            return []
        ids = [row["id"] for row in self._execute("SELECT id FROM stations ORDER BY rowid")]
        removed = [i for i in ids if not is_live(i)]
        if not removed:
            logger.info("No orphaned entries found")
            return []
        self.backup()
        for station_id in removed:
            logger.warning("Removing orphaned entry: CTID %d", station_id)
            self._execute("DELETE FROM stations WHERE id = ?", (station_id,))
        logger.info("Removed %d orphaned entries", len(removed))
        return removed
