"""Tests for the tabular-file inventory store."""

from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timedelta

import pytest

from radiostack.errors import NotFoundError, StoreIOError, ValidationError
from radiostack.inventory import HEADER_LINE, CsvInventoryStore
from radiostack.models import Platform, StationStatus

from fakes import make_record


def ticking_clock(start: datetime = datetime(2025, 3, 1, 12, 0, 0)):
    """Clock that advances one second per call."""
    state = {"now": start}

    def clock() -> datetime:
        now = state["now"]
        state["now"] = now + timedelta(seconds=1)
        return now

    return clock


@pytest.fixture()
def csv_path(tmp_path):
    return tmp_path / "inventory" / "stations.csv"


@pytest.fixture()
def inv(csv_path):
    return CsvInventoryStore(csv_path, clock=ticking_clock())


# ── CRUD ──────────────────────────────────────────────────────────


class TestCrud:
    def test_upsert_then_get_returns_equal_record(self, inv):
        record = make_record(340, name="main", description='Station: "main", FM')
        inv.upsert(record)
        assert inv.get(340) == record

    @pytest.mark.parametrize("description", ["line one\nline two", "morning\r\nshow", "cr\ronly"])
    def test_line_breaks_in_description_round_trip(self, inv, description):
        record = make_record(340, description=description)
        inv.upsert(record)
        inv.upsert(make_record(341))
        assert inv.get(340) == record
        assert [r.id for r in inv.list()] == [340, 341]

    def test_upsert_existing_replaces(self, inv, caplog):
        inv.upsert(make_record(340))
        inv.upsert(make_record(341))
        caplog.set_level(logging.INFO)
        inv.upsert(make_record(340, status=StationStatus.MAINTENANCE))

        records = inv.list()
        assert len(records) == 2
        assert [r.id for r in records] == [340, 341]
        assert inv.get(340).status == StationStatus.MAINTENANCE
        assert "already exists in inventory, updated" in caplog.text
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_replace_keeps_created_date(self, inv):
        inv.upsert(make_record(340, created=date(2024, 5, 1)))
        inv.upsert(make_record(340, created=date(2025, 6, 1)))
        assert inv.get(340).created == date(2024, 5, 1)

    def test_remove_absent_is_noop(self, inv, csv_path):
        inv.upsert(make_record(340))
        before = csv_path.read_bytes()
        assert inv.remove(999) is False
        assert csv_path.read_bytes() == before

    def test_remove_present(self, inv):
        inv.upsert(make_record(340))
        inv.upsert(make_record(341))
        assert inv.remove(340) is True
        assert [r.id for r in inv.list()] == [341]
        assert not inv.contains(340)

    def test_get_missing_raises(self, inv):
        with pytest.raises(NotFoundError):
            inv.get(340)

    def test_list_filters_by_platform(self, inv):
        inv.upsert(make_record(340, "azuracast"))
        inv.upsert(make_record(350, "libretime"))
        inv.upsert(make_record(341, "azuracast"))
        assert [r.id for r in inv.list("azuracast")] == [340, 341]
        assert [r.id for r in inv.list(Platform.LIBRETIME)] == [350]

    def test_list_unknown_platform_raises(self, inv):
        with pytest.raises(ValidationError):
            inv.list("shoutcast")

    def test_update_status(self, inv):
        inv.upsert(make_record(340))
        record = inv.update_status(340, "maintenance")
        assert record.status == StationStatus.MAINTENANCE
        assert inv.get(340).status == StationStatus.MAINTENANCE

    def test_update_status_missing(self, inv):
        with pytest.raises(NotFoundError):
            inv.update_status(340, "stopped")


class TestCount:
    def test_count_empty_store_is_zero(self, inv):
        result = inv.count()
        assert result == 0
        assert type(result) is int

    def test_count_after_init_is_zero(self, inv):
        inv.init()
        assert inv.count() == 0
        assert inv.count("libretime") == 0

    def test_count_with_filter(self, inv):
        inv.upsert(make_record(340, "azuracast"))
        inv.upsert(make_record(350, "libretime"))
        assert inv.count() == 2
        assert inv.count("azuracast") == 1


# ── File format ───────────────────────────────────────────────────


class TestFileFormat:
    def test_header_and_quoted_description(self, inv, csv_path):
        inv.upsert(make_record(340, name="main", description="Station: main"))
        lines = csv_path.read_text().splitlines()
        assert lines[0] == HEADER_LINE
        assert lines[1] == '340,azuracast,azuracast-main,192.168.2.92,"Station: main",2025-01-10,active'

    def test_description_with_comma_and_quotes_round_trips(self, inv):
        desc = 'Rock, "classic" & more'
        inv.upsert(make_record(340, description=desc))
        assert CsvInventoryStore(inv.path).get(340).description == desc

    def test_reads_file_written_by_hand(self, csv_path):
        csv_path.parent.mkdir(parents=True)
        csv_path.write_text(
            HEADER_LINE + "\n"
            '340,azuracast,azuracast-main,192.168.2.140,"Station: main",2025-01-10,active\n'
        )
        record = CsvInventoryStore(csv_path).get(340)
        assert record.hostname == "azuracast-main"
        assert record.address == "192.168.2.140"
        assert record.station_name == "main"

    def test_malformed_row_skipped_in_list(self, csv_path):
        csv_path.parent.mkdir(parents=True)
        csv_path.write_text(
            HEADER_LINE + "\n"
            "garbage,row\n"
            '340,azuracast,azuracast-main,192.168.2.140,"Station: main",2025-01-10,active\n'
        )
        assert [r.id for r in CsvInventoryStore(csv_path).list()] == [340]

    def test_upsert_rejects_corrupt_header(self, csv_path):
        csv_path.parent.mkdir(parents=True)
        csv_path.write_text("id,type\n")
        with pytest.raises(StoreIOError):
            CsvInventoryStore(csv_path).upsert(make_record(340))

    def test_failed_write_leaves_file_intact(self, inv, csv_path, monkeypatch):
        inv.upsert(make_record(340))
        before = csv_path.read_bytes()

        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", boom)
        with pytest.raises(StoreIOError):
            inv.upsert(make_record(341))
        assert csv_path.read_bytes() == before
        assert not list(csv_path.parent.glob(".stations.csv.*.tmp"))

    def test_export_json(self, inv, tmp_path):
        inv.upsert(make_record(340))
        out = inv.export_json(tmp_path / "export" / "stations.json")
        data = json.loads(out.read_text())
        assert data["stations"][0]["id"] == 340
        assert data["stations"][0]["platform"] == "azuracast"


# ── Validation and reconciliation ─────────────────────────────────


class TestValidate:
    def test_clean_store_has_no_issues(self, inv):
        inv.upsert(make_record(340))
        inv.upsert(make_record(341))
        report = inv.validate(lambda i: True)
        assert report.ok
        assert report.issues == 0
        assert report.orphaned_ids == []

    def test_flags_duplicate_id(self, inv, csv_path):
        inv.upsert(make_record(340))
        with csv_path.open("a") as f:
            f.write('340,azuracast,azuracast-dup,192.168.2.99,"Station: dup",2025-01-10,active\n')
        report = inv.validate()
        assert not report.ok
        assert report.duplicate_ids == [340]

    def test_flags_corrupt_header(self, inv, csv_path):
        inv.upsert(make_record(340))
        text = csv_path.read_text().replace("CTID,Type", "ID,Kind", 1)
        csv_path.write_text(text)
        report = inv.validate()
        assert not report.header_ok
        assert not report.ok
        assert report.header_found.startswith("ID,Kind")

    def test_flags_orphans_without_mutating(self, inv, csv_path):
        inv.upsert(make_record(340))
        inv.upsert(make_record(341))
        before = csv_path.read_bytes()
        report = inv.validate(lambda i: i == 340)
        assert report.orphaned_ids == [341]
        assert report.ok  # orphans are reported, not structural errors
        assert csv_path.read_bytes() == before

    def test_missing_file_is_clean(self, inv):
        assert inv.validate().ok


class TestReconcile:
    def test_removes_exactly_the_orphans(self, inv, csv_path):
        for station_id in (340, 341, 342, 343):
            inv.upsert(make_record(station_id))
        live = {340, 342}

        removed = inv.reconcile(live.__contains__)

        assert removed == [341, 343]
        assert [r.id for r in inv.list()] == [340, 342]
        assert csv_path.read_text().splitlines()[0] == HEADER_LINE

    def test_nothing_to_remove(self, inv, csv_path):
        inv.upsert(make_record(340))
        backups_before = len(inv.list_backups())
        assert inv.reconcile(lambda i: True) == []
        assert len(inv.list_backups()) == backups_before


# ── Backups ───────────────────────────────────────────────────────


class TestBackups:
    def test_retention_keeps_ten_most_recent(self, inv):
        for n in range(12):
            inv.upsert(make_record(300 + n))

        backups = inv.list_backups()
        assert len(backups) == 10
        # First two snapshots (12:00:00 and 12:00:01) were pruned.
        names = sorted(p.name for p in backups)
        assert names[0].startswith("stations-20250301-120002")
        assert names[-1].startswith("stations-20250301-120011")

    def test_backup_holds_prior_state(self, inv):
        inv.upsert(make_record(340))
        inv.upsert(make_record(341))
        newest = inv.list_backups()[0]
        content = newest.read_text()
        assert "340,azuracast" in content
        assert "341,azuracast" not in content

    def test_backup_failure_does_not_block_mutation(self, csv_path, tmp_path, caplog):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        inv = CsvInventoryStore(csv_path, backup_dir=blocker / "backups")
        inv.upsert(make_record(340))
        inv.upsert(make_record(341))
        assert inv.count() == 2
        assert "backup failed" in caplog.text

    def test_no_backup_without_file(self, inv):
        assert inv.backup() is None
