"""Tests for command runners and the Proxmox / ZFS collaborators."""

from __future__ import annotations

import sys

import pytest

from radiostack.collaborators import ProxmoxCompute, ZfsStorage
from radiostack.collaborators.proxmox import config_address, parse_config
from radiostack.collaborators.zfs import parse_size
from radiostack.config import RadioStackConfig
from radiostack.errors import ExternalToolError, NotFoundError, ValidationError
from radiostack.models import HealthState, Platform, StationSpec
from radiostack.runner import LocalRunner, MockRunner, connect_runner

PCT_CONFIG = """\
arch: amd64
cores: 4
description: Station%3A main
hostname: azuracast-main
memory: 4092
mp0: /hdd-pool/container-data/azuracast-media/main,mp=/var/azuracast
net0: name=eth0,bridge=vmbr1,gw=192.168.2.1,hwaddr=BC:24:11:00:00:01,ip=192.168.2.140/24,type=veth
rootfs: data:vm-340-disk-0,size=32G
swap: 1023
"""


def make_spec(**overrides) -> StationSpec:
    data = dict(
        id=340,
        station_name="main",
        platform=Platform.AZURACAST,
        cores=4,
        memory_mb=4092,
        storage_quota="500G",
        address_suffix=140,
        hostname="azuracast-main",
        address="192.168.2.140",
        dataset_path="hdd-pool/container-data/azuracast-media/main",
        host_path="/hdd-pool/container-data/azuracast-media/main",
        mount_path="/var/azuracast",
        install_path="/var/azuracast",
        description="azuracast radio station - main",
    )
    data.update(overrides)
    return StationSpec(**data)


# ── Runners ───────────────────────────────────────────────────────


class TestRunners:
    async def test_local_runner_captures_output(self):
        result = await LocalRunner().run([sys.executable, "-c", "print('on air')"])
        assert result.ok
        assert result.stdout.strip() == "on air"

    async def test_local_runner_passes_input(self):
        code = "import sys; print(sys.stdin.read().upper())"
        result = await LocalRunner().run([sys.executable, "-c", code], input="hello")
        assert result.stdout.strip() == "HELLO"

    async def test_local_runner_failure_raises(self):
        with pytest.raises(ExternalToolError) as exc_info:
            await LocalRunner().run([sys.executable, "-c", "import sys; sys.exit(3)"])
        assert exc_info.value.returncode == 3

    async def test_local_runner_unchecked(self):
        result = await LocalRunner().run(
            [sys.executable, "-c", "import sys; sys.exit(2)"], check=False
        )
        assert result.returncode == 2
        assert not result.ok

    async def test_missing_binary(self):
        with pytest.raises(ExternalToolError, match="Command not found"):
            await LocalRunner().run(["radiostack-no-such-binary"])

    async def test_mock_runner_longest_prefix_wins(self):
        runner = MockRunner()
        runner.add("pct status", stdout="status: stopped")
        runner.add("pct status 340", stdout="status: running")
        assert (await runner.run(["pct", "status", "340"])).stdout == "status: running"
        assert (await runner.run(["pct", "status", "341"])).stdout == "status: stopped"
        assert runner.commands() == ["pct status 340", "pct status 341"]

    async def test_connect_without_host_is_local(self):
        assert isinstance(await connect_runner(""), LocalRunner)


# ── Proxmox ───────────────────────────────────────────────────────


class TestProxmoxCompute:
    @pytest.fixture()
    def runner(self):
        return MockRunner()

    @pytest.fixture()
    def compute(self, runner):
        return ProxmoxCompute(runner, RadioStackConfig())

    def test_parse_config(self):
        config = parse_config(PCT_CONFIG)
        assert config["hostname"] == "azuracast-main"
        assert config["mp0"].endswith("mp=/var/azuracast")
        assert config_address(config) == "192.168.2.140"

    def test_config_address_missing(self):
        assert config_address({"hostname": "x"}) == ""

    async def test_create_argv(self, compute, runner):
        await compute.create(make_spec())
        argv = runner.calls[0]
        assert argv[:4] == ["pct", "create", "340", RadioStackConfig().template]
        assert argv[argv.index("--hostname") + 1] == "azuracast-main"
        assert argv[argv.index("--swap") + 1] == "1023"
        assert argv[argv.index("--unprivileged") + 1] == "1"
        assert argv[argv.index("--features") + 1] == "nesting=1,keyctl=1"
        assert argv[argv.index("--net0") + 1] == (
            "name=eth0,bridge=vmbr1,ip=192.168.2.140/24,gw=192.168.2.1"
        )
        assert "--searchdomain" not in argv
        assert argv[-2:] == ["--start", "0"]

    async def test_create_with_searchdomain(self, runner):
        compute = ProxmoxCompute(runner, RadioStackConfig(searchdomain="radio.lan"))
        await compute.create(make_spec())
        argv = runner.calls[0]
        assert argv[argv.index("--searchdomain") + 1] == "radio.lan"

    async def test_status(self, compute, runner):
        runner.add("pct status 340", stdout="status: running\n")
        runner.add("pct status 341", returncode=2, stderr="Configuration file does not exist")
        assert await compute.status(340) == "running"
        assert await compute.status(341) == "missing"
        assert await compute.exists(340)
        assert not await compute.exists(341)

    async def test_list_ids(self, compute, runner):
        runner.add(
            "pct list",
            stdout=(
                "VMID       Status     Lock         Name\n"
                "340        running                 azuracast-main\n"
                "350        stopped                 libretime-talk\n"
            ),
        )
        assert await compute.list_ids() == {340, 350}

    @pytest.mark.parametrize(
        "stdout, returncode, expected",
        [
            ("running\n", 0, HealthState.RUNNING),
            ("degraded\n", 1, HealthState.DEGRADED),
            ("starting\n", 1, HealthState.UNKNOWN),
            ("", 255, HealthState.STOPPED),
        ],
    )
    async def test_is_healthy(self, compute, runner, stdout, returncode, expected):
        runner.add("pct exec 340 -- systemctl is-system-running", stdout=stdout, returncode=returncode)
        assert await compute.is_healthy(340) == expected

    async def test_attach_and_stop(self, compute, runner):
        await compute.attach_volume(340, "/hdd-pool/x", "/var/azuracast")
        await compute.stop(340, timeout=30)
        assert runner.commands() == [
            "pct set 340 -mp0 /hdd-pool/x,mp=/var/azuracast",
            "pct stop 340 --timeout 30",
        ]

    async def test_bootstrap_sets_timezone(self, compute, runner):
        await compute.exec_bootstrap(340)
        argv = runner.calls[0]
        assert argv[:6] == ["pct", "exec", "340", "--", "bash", "-c"]
        assert "timedatectl set-timezone America/Argentina/Buenos_Aires" in argv[6]

    async def test_snapshot_backup(self, compute, runner):
        runner.add("vzdump 340", stdout="INFO: Backup job finished successfully")
        out = await compute.snapshot_backup(340)
        assert "finished" in out
        assert runner.commands() == [
            "vzdump 340 --storage hdd-backups --compress zstd --mode snapshot"
        ]

    async def test_list_backups(self, compute, runner):
        runner.add(
            "pvesm list hdd-backups",
            stdout=(
                "Volid                                                   Format  Type     Size VMID\n"
                "hdd-backups:backup/vzdump-lxc-340-2025_03_01-04_30_00.tar.zst tar.zst backup 1024 340\n"
                "hdd-backups:backup/vzdump-lxc-350-2025_03_01-04_35_00.tar.zst tar.zst backup 2048 350\n"
                "hdd-backups:iso/debian-13.iso iso iso 4096\n"
            ),
        )
        assert await compute.list_backups(340) == [
            "hdd-backups:backup/vzdump-lxc-340-2025_03_01-04_30_00.tar.zst"
        ]
        assert len(await compute.list_backups()) == 2

    async def test_failed_command_raises(self, compute, runner):
        runner.add("pct start 340", returncode=255, stderr="CT is locked")
        with pytest.raises(ExternalToolError) as exc_info:
            await compute.start(340)
        assert "CT is locked" in str(exc_info.value)
        assert exc_info.value.command == ["pct", "start", "340"]


# ── ZFS ───────────────────────────────────────────────────────────


class TestParseSize:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("500G", 500 * 1024**3),
            ("1.5T", int(1.5 * 1024**4)),
            ("128k", 128 * 1024),
            ("4096", 4096),
            ("2GiB", 2 * 1024**3),
            (1234, 1234),
        ],
    )
    def test_units(self, value, expected):
        assert parse_size(value) == expected

    def test_invalid(self):
        with pytest.raises(ValidationError):
            parse_size("huge")


class TestZfsStorage:
    DATASET = "hdd-pool/container-data/azuracast-media/main"

    @pytest.fixture()
    def runner(self):
        return MockRunner()

    @pytest.fixture()
    def storage(self, runner):
        return ZfsStorage(runner)

    async def test_pool_health(self, storage, runner):
        runner.add("zpool list -H -o health hdd-pool", stdout="ONLINE\n")
        runner.add("zpool list -H -o health tank", stdout="DEGRADED\n")
        runner.add("zpool list -H -o health missing", returncode=1)
        assert await storage.pool_healthy("hdd-pool")
        assert not await storage.pool_healthy("tank")
        assert not await storage.pool_healthy("missing")

    async def test_free_capacity(self, storage, runner):
        runner.add("zpool list -H -p -o free hdd-pool", stdout="1099511627776\n")
        assert await storage.pool_free_capacity("hdd-pool") == 1024**4

    async def test_create_volume_tunes_for_media(self, storage, runner):
        await storage.create_volume(self.DATASET, "500G")
        assert runner.commands() == [
            f"zfs create -p {self.DATASET}",
            f"zfs set compression=lz4 {self.DATASET}",
            f"zfs set recordsize=128k {self.DATASET}",
            f"zfs set atime=off {self.DATASET}",
            f"zfs set quota=500G {self.DATASET}",
        ]

    async def test_tune_existing_volume(self, storage, runner):
        await storage.tune_volume(self.DATASET, "1T", record_size="1M")
        assert runner.commands() == [
            f"zfs set compression=lz4 {self.DATASET}",
            f"zfs set recordsize=1M {self.DATASET}",
            f"zfs set atime=off {self.DATASET}",
            f"zfs set quota=1T {self.DATASET}",
        ]

    async def test_set_quota(self, storage, runner):
        await storage.set_quota(self.DATASET, "2T")
        assert runner.commands() == [f"zfs set quota=2T {self.DATASET}"]

    async def test_destroy_missing(self, storage, runner):
        runner.add(f"zfs list -H -o name {self.DATASET}", returncode=1)
        with pytest.raises(NotFoundError):
            await storage.destroy_volume(self.DATASET)

    async def test_destroy(self, storage, runner):
        await storage.destroy_volume(self.DATASET)
        assert runner.commands()[-1] == f"zfs destroy -r {self.DATASET}"

    async def test_snapshots(self, storage, runner):
        runner.add(
            "zfs list -H -t snapshot",
            stdout=f"{self.DATASET}@backup-20250301-043000\n{self.DATASET}@manual\n",
        )
        assert await storage.list_snapshots(self.DATASET) == ["backup-20250301-043000", "manual"]
        await storage.rollback(self.DATASET, "manual")
        assert runner.commands()[-1] == f"zfs rollback -r {self.DATASET}@manual"
        with pytest.raises(NotFoundError):
            await storage.rollback(self.DATASET, "nope")

    async def test_ownership(self, storage, runner):
        await storage.set_ownership(self.DATASET, "100000:100000")
        assert runner.commands() == [
            f"chown -R 100000:100000 /{self.DATASET}",
            f"chmod -R 755 /{self.DATASET}",
        ]

    def test_mountpoint(self, storage):
        assert storage.mountpoint(self.DATASET) == f"/{self.DATASET}"
