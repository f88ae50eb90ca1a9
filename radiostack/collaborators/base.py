"""Capabilities the lifecycle core needs from the host.

The orchestrator talks to these protocols only; the Proxmox and ZFS
implementations live next to this module, and tests use in-memory fakes.
Every mutating call raises :class:`~radiostack.errors.ExternalToolError`
on failure instead of returning a status flag.
"""

from __future__ import annotations

from typing import Protocol

from radiostack.models import HealthState, StationSpec
from radiostack.runner import CommandResult


class ComputeCollaborator(Protocol):
    """Container manager on the virtualization host."""

    async def exists(self, station_id: int) -> bool:
        ...

    async def list_ids(self) -> set[int]:
        """IDs of every container the host knows about."""
        ...

    async def create(self, spec: StationSpec) -> None:
        ...

    async def start(self, station_id: int) -> None:
        ...

    async def stop(self, station_id: int, timeout: int = 60) -> None:
        ...

    async def destroy(self, station_id: int) -> None:
        ...

    async def status(self, station_id: int) -> str:
        """``running``, ``stopped`` or ``missing``."""
        ...

    async def is_healthy(self, station_id: int) -> HealthState:
        ...

    async def config(self, station_id: int) -> dict[str, str]:
        """Container configuration as ``key -> value``."""
        ...

    async def attach_volume(
        self, station_id: int, host_path: str, mount_path: str, index: int = 0
    ) -> None:
        ...

    async def exec(
        self,
        station_id: int,
        argv: list[str],
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run *argv* inside the container."""
        ...

    async def exec_bootstrap(self, station_id: int) -> None:
        """Package refresh, minimal toolset and timezone."""
        ...

    async def snapshot_backup(self, station_id: int) -> str:
        ...

    async def list_backups(self, station_id: int | None = None) -> list[str]:
        """Container backup volume ids, optionally for one station."""
        ...


class StorageCollaborator(Protocol):
    """Volume manager on the virtualization host."""

    async def pool_healthy(self, pool: str) -> bool:
        ...

    async def pool_free_capacity(self, pool: str) -> int:
        """Free bytes in *pool*."""
        ...

    async def volume_exists(self, path: str) -> bool:
        ...

    async def create_volume(self, path: str, quota: str, record_size: str = "128k") -> None:
        ...

    async def tune_volume(self, path: str, quota: str, record_size: str = "128k") -> None:
        """(Re)apply quota and media properties to an existing volume."""
        ...

    async def destroy_volume(self, path: str) -> None:
        ...

    async def set_quota(self, path: str, quota: str) -> None:
        ...

    async def snapshot(self, path: str, name: str) -> None:
        ...

    async def rollback(self, path: str, name: str) -> None:
        ...

    async def list_snapshots(self, path: str) -> list[str]:
        ...

    async def set_ownership(self, path: str, mapping: str) -> None:
        """``chown -R`` the mounted volume to *mapping* (``uid:gid``)."""
        ...

    def mountpoint(self, path: str) -> str:
        """Host path where *path* is mounted."""
        ...
