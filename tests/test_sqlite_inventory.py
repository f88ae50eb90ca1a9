"""Tests for the SQLite inventory backend."""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timedelta

import pytest

from radiostack.config import RadioStackConfig
from radiostack.errors import NotFoundError, ValidationError
from radiostack.inventory import CsvInventoryStore, SqliteInventoryStore, open_store
from radiostack.models import StationStatus

from fakes import make_record


def ticking_clock(start: datetime = datetime(2025, 3, 1, 12, 0, 0)):
    state = {"now": start}

    def clock() -> datetime:
        now = state["now"]
        state["now"] = now + timedelta(seconds=1)
        return now

    return clock


@pytest.fixture()
def db_path(tmp_path):
    return tmp_path / "inventory" / "stations.db"


@pytest.fixture()
def inv(db_path):
    store = SqliteInventoryStore(db_path, clock=ticking_clock())
    yield store
    store.close()


class TestSqliteCrud:
    def test_upsert_then_get(self, inv):
        record = make_record(340, name="main", description='Rock, "classic"')
        inv.upsert(record)
        assert inv.get(340) == record

    def test_list_keeps_insertion_order(self, inv):
        for station_id in (345, 340, 350):
            inv.upsert(make_record(station_id))
        assert [r.id for r in inv.list()] == [345, 340, 350]

    def test_replace_keeps_row_position_and_created(self, inv, caplog):
        inv.upsert(make_record(340, created=date(2024, 5, 1)))
        inv.upsert(make_record(341))
        caplog.set_level(logging.INFO)
        inv.upsert(make_record(340, created=date(2025, 6, 1), status="stopped"))

        assert [r.id for r in inv.list()] == [340, 341]
        record = inv.get(340)
        assert record.created == date(2024, 5, 1)
        assert record.status == StationStatus.STOPPED
        assert "already exists in inventory, updated" in caplog.text

    def test_platform_filter(self, inv):
        inv.upsert(make_record(340, "azuracast"))
        inv.upsert(make_record(350, "libretime"))
        assert [r.id for r in inv.list("libretime")] == [350]
        assert inv.count("azuracast") == 1

    def test_count_empty_is_zero(self, inv):
        assert inv.count() == 0

    def test_remove(self, inv):
        inv.upsert(make_record(340))
        assert inv.remove(340) is True
        assert inv.remove(340) is False
        with pytest.raises(NotFoundError):
            inv.get(340)

    def test_remove_without_database_is_noop(self, inv, db_path):
        assert inv.remove(340) is False
        assert not db_path.exists()

    def test_unknown_platform_filter(self, inv):
        with pytest.raises(ValidationError):
            inv.list("shoutcast")


class TestSqliteConsistency:
    def test_validate_clean(self, inv):
        inv.upsert(make_record(340))
        report = inv.validate(lambda i: True)
        assert report.ok
        assert report.header_found == "id,platform,hostname,address,description,created,status"

    def test_validate_flags_malformed_row(self, inv, db_path):
        inv.upsert(make_record(340))
        conn = sqlite3.connect(str(db_path))
        conn.execute(
            "INSERT INTO stations VALUES (341, 'shoutcast', 'x', '1.2.3.4', '', '2025-01-10', 'active')"
        )
        conn.commit()
        conn.close()

        report = inv.validate()
        assert not report.ok
        assert len(report.malformed_rows) == 1
        assert [r.id for r in inv.list()] == [340]

    def test_validate_reports_orphans(self, inv):
        inv.upsert(make_record(340))
        inv.upsert(make_record(341))
        report = inv.validate(lambda i: i == 341)
        assert report.orphaned_ids == [340]
        assert report.ok

    def test_reconcile_removes_orphans(self, inv):
        for station_id in (340, 341, 342):
            inv.upsert(make_record(station_id))
        assert inv.reconcile(lambda i: i != 341) == [341]
        assert [r.id for r in inv.list()] == [340, 342]


class TestSqliteBackups:
    def test_retention(self, inv):
        for n in range(12):
            inv.upsert(make_record(300 + n))
        backups = inv.list_backups()
        assert len(backups) == 10
        assert all(p.suffix == ".db" for p in backups)

    def test_backup_is_a_readable_database(self, inv):
        inv.upsert(make_record(340))
        inv.upsert(make_record(341))
        newest = inv.list_backups()[0]
        conn = sqlite3.connect(str(newest))
        ids = [row[0] for row in conn.execute("SELECT id FROM stations")]
        conn.close()
        assert ids == [340]


class TestOpenStore:
    def test_default_backend_is_csv(self, tmp_path):
        cfg = RadioStackConfig(inventory_file=str(tmp_path / "stations.csv"))
        store = open_store(cfg)
        assert isinstance(store, CsvInventoryStore)
        assert store.backup_dir == tmp_path / "backups"

    def test_sqlite_backend(self, tmp_path):
        cfg = RadioStackConfig(
            inventory_file=str(tmp_path / "stations.db"),
            inventory_backend="sqlite",
            inventory_backup_keep=3,
        )
        store = open_store(cfg)
        assert isinstance(store, SqliteInventoryStore)
        assert store.keep == 3

    def test_unknown_backend(self, tmp_path):
        cfg = RadioStackConfig(inventory_file=str(tmp_path / "x"), inventory_backend="redis")
        with pytest.raises(ValidationError):
            open_store(cfg)
