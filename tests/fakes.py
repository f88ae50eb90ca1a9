"""In-memory host fakes shared by the RadioStack tests."""

from __future__ import annotations

from datetime import date

from radiostack.collaborators.zfs import parse_size
from radiostack.errors import ExternalToolError, NotFoundError
from radiostack.models import HealthState, Platform, StationRecord, StationSpec
from radiostack.runner import CommandResult


async def no_sleep(_seconds: float) -> None:
    return None


def make_record(station_id: int, platform: str = "azuracast", name: str = "", **kwargs) -> StationRecord:
    name = name or f"s{station_id}"
    return StationRecord(
        id=station_id,
        platform=platform,
        hostname=f"{platform}-{name}",
        address=kwargs.pop("address", f"192.168.2.{station_id % 250 + 2}"),
        description=kwargs.pop("description", f"Station: {name}"),
        created=kwargs.pop("created", date(2025, 1, 10)),
        **kwargs,
    )


# ── Fakes ─────────────────────────────────────────────────────────


class FakeCompute:
    """Containers held in a dict; ``fail`` maps method name -> exception."""

    def __init__(self) -> None:
        self.containers: dict[int, dict] = {}
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self.health: list[HealthState] = []
        self.backups: list[str] = []

    def _maybe_fail(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        if method in self.fail:
            raise self.fail[method]

    def add(self, station_id: int, hostname: str = "", state: str = "running") -> None:
        self.containers[station_id] = {"hostname": hostname or f"ct-{station_id}", "state": state, "mounts": {}}

    def methods(self) -> list[str]:
        return [c[0] for c in self.calls]

    async def exists(self, station_id):
        return station_id in self.containers

    async def list_ids(self):
        return set(self.containers)

    async def create(self, spec: StationSpec):
        self._maybe_fail("create", spec.id)
        if spec.id in self.containers:
            raise ExternalToolError(f"CT {spec.id} already exists")
        self.containers[spec.id] = {
            "hostname": spec.hostname,
            "state": "stopped",
            "mounts": {},
            "cores": str(spec.cores),
            "memory": str(spec.memory_mb),
            "swap": str(spec.swap_mb),
            "address": spec.address,
        }

    async def start(self, station_id):
        self._maybe_fail("start", station_id)
        self.containers[station_id]["state"] = "running"

    async def stop(self, station_id, timeout=60):
        self._maybe_fail("stop", station_id)
        self.containers[station_id]["state"] = "stopped"

    async def destroy(self, station_id):
        self._maybe_fail("destroy", station_id)
        del self.containers[station_id]

    async def status(self, station_id):
        ct = self.containers.get(station_id)
        return ct["state"] if ct else "missing"

    async def is_healthy(self, station_id):
        self.calls.append(("is_healthy", station_id))
        if self.health:
            return self.health.pop(0)
        return HealthState.RUNNING

    async def config(self, station_id):
        ct = self.containers.get(station_id)
        if ct is None:
            raise ExternalToolError(f"CT {station_id} does not exist")
        config = {"hostname": ct["hostname"]}
        for key in ("cores", "memory", "swap"):
            if key in ct:
                config[key] = ct[key]
        if "address" in ct:
            config["net0"] = f"name=eth0,bridge=vmbr1,ip={ct['address']}/24,gw=192.168.2.1"
        config.update(ct["mounts"])
        return config

    async def attach_volume(self, station_id, host_path, mount_path, index=0):
        self._maybe_fail("attach_volume", station_id)
        self.containers[station_id]["mounts"][f"mp{index}"] = f"{host_path},mp={mount_path}"

    async def exec(self, station_id, argv, input=None, check=True):
        self.calls.append(("exec", station_id, tuple(argv)))
        return CommandResult()

    async def exec_bootstrap(self, station_id):
        self._maybe_fail("exec_bootstrap", station_id)

    async def snapshot_backup(self, station_id):
        self._maybe_fail("snapshot_backup", station_id)
        self.backups.append(
            f"hdd-backups:backup/vzdump-lxc-{station_id}-2025_03_01-04_30_{len(self.backups):02d}.tar.zst"
        )
        return "INFO: backup finished"

    async def list_backups(self, station_id=None):
        marker = "vzdump-lxc-" if station_id is None else f"vzdump-lxc-{station_id}-"
        return [b for b in self.backups if marker in b]


class FakeStorage:
    """ZFS pool with a fixed capacity; every dataset claims its quota."""

    def __init__(self, capacity: str = "10T") -> None:
        self.capacity = parse_size(capacity)
        self.healthy = True
        self.volumes: dict[str, int] = {}
        self.snapshots: dict[str, list[str]] = {}
        self.ownership: dict[str, str] = {}
        self.record_sizes: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}

    def _maybe_fail(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        if method in self.fail:
            raise self.fail[method]

    async def pool_healthy(self, pool):
        return self.healthy

    async def pool_free_capacity(self, pool):
        return self.capacity - sum(self.volumes.values())

    async def volume_exists(self, path):
        return path in self.volumes

    async def create_volume(self, path, quota, record_size="128k"):
        self._maybe_fail("create_volume", path, quota, record_size)
        self.volumes[path] = 0
        await self.tune_volume(path, quota, record_size)

    async def tune_volume(self, path, quota, record_size="128k"):
        self._maybe_fail("tune_volume", path, quota, record_size)
        self.volumes[path] = parse_size(quota)
        self.record_sizes[path] = record_size

    async def destroy_volume(self, path):
        self._maybe_fail("destroy_volume", path)
        if path not in self.volumes:
            raise NotFoundError(path)
        del self.volumes[path]
        self.snapshots.pop(path, None)

    async def set_quota(self, path, quota):
        self._maybe_fail("set_quota", path, quota)
        self.volumes[path] = parse_size(quota)

    async def snapshot(self, path, name):
        self._maybe_fail("snapshot", path, name)
        self.snapshots.setdefault(path, []).append(name)

    async def rollback(self, path, name):
        self._maybe_fail("rollback", path, name)
        if name not in self.snapshots.get(path, []):
            raise NotFoundError(f"{path}@{name}")

    async def list_snapshots(self, path):
        return list(self.snapshots.get(path, []))

    async def set_ownership(self, path, mapping):
        self._maybe_fail("set_ownership", path, mapping)
        self.ownership[path] = mapping

    def mountpoint(self, path):
        return "/" + path


class FakeInstaller:
    """Platform installer double; ``fail_update`` holds ids whose update fails."""

    def __init__(self, platform: Platform) -> None:
        self.platform = platform
        self.installed: set[int] = set()
        self.fail_install: Exception | None = None
        self.fail_update: set[int] = set()
        self.fail_backup: set[int] = set()
        self.calls: list[tuple] = []

    async def install(self, station_id, mount_path, install_path, version="stable"):
        self.calls.append(("install", station_id, mount_path, install_path, version))
        if self.fail_install is not None:
            raise self.fail_install
        self.installed.add(station_id)

    async def is_installed(self, station_id):
        return station_id in self.installed

    async def update(self, station_id):
        self.calls.append(("update", station_id))
        if station_id in self.fail_update:
            raise ExternalToolError(f"update failed for {station_id}", returncode=1)

    async def backup(self, station_id):
        self.calls.append(("backup", station_id))
        if station_id in self.fail_backup:
            raise ExternalToolError(f"backup failed for {station_id}", returncode=1)
        return "backup ok"

    async def logs(self, station_id, lines=100, service=""):
        return f"logs for {station_id} ({lines})"

    async def installed_version(self, station_id):
        return "0.20.0"
