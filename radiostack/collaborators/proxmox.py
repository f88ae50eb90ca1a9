"""Proxmox VE container collaborator (``pct`` / ``vzdump``)."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from radiostack.models import HealthState, StationSpec
from radiostack.runner import CommandResult, CommandRunner

if TYPE_CHECKING:
    from radiostack.config import RadioStackConfig

logger = logging.getLogger(__name__)

_BASE_PACKAGES = "curl wget git ca-certificates gnupg sudo htop vim"

_BOOTSTRAP_SCRIPT = """\
export DEBIAN_FRONTEND=noninteractive
apt-get update || exit 1
apt-get dist-upgrade -y || exit 1
apt-get install -y {packages} || exit 1
timedatectl set-timezone {timezone} || exit 1
"""

_NET_IP_RE = re.compile(r"ip=([0-9.]+)")


def parse_config(text: str) -> dict[str, str]:
    """Parse ``pct config`` output (``key: value`` per line)."""
    config: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key and not key.startswith("#"):
            config[key.strip()] = value.strip()
    return config


def config_address(config: dict[str, str]) -> str:
    """IPv4 address from the ``net0`` entry, or ``""``."""
    m = _NET_IP_RE.search(config.get("net0", ""))
    return m.group(1) if m else ""


class ProxmoxCompute:
    """LXC containers managed through ``pct`` on a Proxmox node."""

    def __init__(self, runner: CommandRunner, config: RadioStackConfig) -> None:
        self._runner = runner
        self._cfg = config

    async def _pct(self, *args: str, check: bool = True) -> CommandResult:
        return await self._runner.run(["pct", *args], check=check)

    async def exists(self, station_id: int) -> bool:
        result = await self._pct("status", str(station_id), check=False)
        return result.ok

    async def list_ids(self) -> set[int]:
        result = await self._pct("list")
        ids: set[int] = set()
        for line in result.stdout.splitlines()[1:]:
            fields = line.split()
            if fields and fields[0].isdigit():
                ids.add(int(fields[0]))
        return ids

    async def create(self, spec: StationSpec) -> None:
        cfg = self._cfg
        net0 = (
            f"name=eth0,bridge={cfg.bridge},ip={spec.address}/{cfg.netmask_bits},"
            f"gw={cfg.gateway}"
        )
        argv = [
            "create", str(spec.id), cfg.template,
            "--hostname", spec.hostname,
            "--description", spec.description or f"Station: {spec.station_name}",
            "--cores", str(spec.cores),
            "--memory", str(spec.memory_mb),
            "--swap", str(spec.swap_mb),
            "--rootfs", cfg.rootfs,
            "--unprivileged", "1",
            "--features", "nesting=1,keyctl=1",
            "--net0", net0,
            "--nameserver", cfg.nameserver,
        ]
        if cfg.searchdomain:
            argv += ["--searchdomain", cfg.searchdomain]
        argv += ["--ostype", "debian", "--start", "0"]

        logger.info("Creating container %d (%s)", spec.id, spec.hostname)
        await self._pct(*argv)

    async def start(self, station_id: int) -> None:
        logger.info("Starting container %d", station_id)
        await self._pct("start", str(station_id))

    async def stop(self, station_id: int, timeout: int = 60) -> None:
        logger.info("Stopping container %d (timeout %ds)", station_id, timeout)
        await self._pct("stop", str(station_id), "--timeout", str(timeout))

    async def destroy(self, station_id: int) -> None:
        logger.info("Destroying container %d", station_id)
        await self._pct("destroy", str(station_id))

    async def status(self, station_id: int) -> str:
        result = await self._pct("status", str(station_id), check=False)
        if not result.ok:
            return "missing"
        # "status: running"
        _, _, state = result.stdout.strip().partition(":")
        return state.strip() or "unknown"

    async def is_healthy(self, station_id: int) -> HealthState:
        result = await self.exec(
            station_id, ["systemctl", "is-system-running"], check=False
        )
        lines = result.stdout.strip().splitlines()
        state = lines[-1].strip() if lines else ""
        if state == "running":
            return HealthState.RUNNING
        if state == "degraded":
            return HealthState.DEGRADED
        if state in ("offline", "stopping") or (not state and not result.ok):
            return HealthState.STOPPED
        return HealthState.UNKNOWN

    async def config(self, station_id: int) -> dict[str, str]:
        result = await self._pct("config", str(station_id))
        return parse_config(result.stdout)

    async def attach_volume(
        self, station_id: int, host_path: str, mount_path: str, index: int = 0
    ) -> None:
        logger.info("Attaching %s to container %d at %s", host_path, station_id, mount_path)
        await self._pct("set", str(station_id), f"-mp{index}", f"{host_path},mp={mount_path}")

    async def exec(
        self,
        station_id: int,
        argv: list[str],
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        return await self._runner.run(
            ["pct", "exec", str(station_id), "--", *argv], input=input, check=check
        )

    async def exec_bootstrap(self, station_id: int) -> None:
        logger.info("Updating system and installing essentials in container %d", station_id)
        script = _BOOTSTRAP_SCRIPT.format(packages=_BASE_PACKAGES, timezone=self._cfg.timezone)
        await self.exec(station_id, ["bash", "-c", script])

    async def snapshot_backup(self, station_id: int) -> str:
        cfg = self._cfg
        logger.info("Creating container backup for %d on %s", station_id, cfg.backup_storage)
        result = await self._runner.run([
            "vzdump", str(station_id),
            "--storage", cfg.backup_storage,
            "--compress", cfg.backup_compress,
            "--mode", cfg.backup_mode,
        ])
        return result.stdout

    async def list_backups(self, station_id: int | None = None) -> list[str]:
        marker = "vzdump-lxc-" if station_id is None else f"vzdump-lxc-{station_id}-"
        result = await self._runner.run(["pvesm", "list", self._cfg.backup_storage])
        volids = []
        for line in result.stdout.splitlines():
            fields = line.split()
            if fields and fields[0] != "Volid" and marker in fields[0]:
                volids.append(fields[0])
        return volids
