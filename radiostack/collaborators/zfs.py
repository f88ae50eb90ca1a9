"""ZFS storage collaborator (``zfs`` / ``zpool``)."""

from __future__ import annotations

import logging
import re

from radiostack.errors import NotFoundError, ValidationError
from radiostack.runner import CommandRunner

logger = logging.getLogger(__name__)

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGTPE]?)(?:I?B)?\s*$", re.IGNORECASE)
_UNITS = {"": 0, "K": 1, "M": 2, "G": 3, "T": 4, "P": 5, "E": 6}


def parse_size(value: str | int) -> int:
    """Parse a ZFS-style size (``500G``, ``1.5T``, ``4096``) into bytes."""
    if isinstance(value, int):
        return value
    m = _SIZE_RE.match(str(value))
    if not m:
        raise ValidationError(f"Invalid size: {value!r}")
    number, unit = m.groups()
    return int(float(number) * 1024 ** _UNITS[unit.upper()])


class ZfsStorage:
    """Datasets on a local ZFS pool, mounted at ``/<dataset>``."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    async def pool_healthy(self, pool: str) -> bool:
        result = await self._runner.run(["zpool", "list", "-H", "-o", "health", pool], check=False)
        if not result.ok:
            logger.error("ZFS pool does not exist: %s", pool)
            return False
        health = result.stdout.strip()
        if health != "ONLINE":
            logger.error("ZFS pool %s is not healthy: %s", pool, health)
            return False
        return True

    async def pool_free_capacity(self, pool: str) -> int:
        result = await self._runner.run(["zpool", "list", "-H", "-p", "-o", "free", pool])
        return parse_size(result.stdout.strip())

    def mountpoint(self, path: str) -> str:
        return "/" + path.strip("/")

    async def volume_exists(self, path: str) -> bool:
        result = await self._runner.run(["zfs", "list", "-H", "-o", "name", path], check=False)
        return result.ok

    async def create_volume(self, path: str, quota: str, record_size: str = "128k") -> None:
        logger.info("Creating dataset %s (quota %s)", path, quota)
        await self._runner.run(["zfs", "create", "-p", path])
        await self.tune_volume(path, quota, record_size)

    async def tune_volume(self, path: str, quota: str, record_size: str = "128k") -> None:
        """Apply the media dataset properties; safe to repeat."""
        for prop in (
            "compression=lz4",
            f"recordsize={record_size}",
            "atime=off",
            f"quota={quota}",
        ):
            await self._runner.run(["zfs", "set", prop, path])

    async def destroy_volume(self, path: str) -> None:
        if not await self.volume_exists(path):
            raise NotFoundError(f"Dataset does not exist: {path}")
        logger.warning("Destroying dataset %s", path)
        await self._runner.run(["zfs", "destroy", "-r", path])

    async def set_quota(self, path: str, quota: str) -> None:
        parse_size(quota)
        await self._runner.run(["zfs", "set", f"quota={quota}", path])

    async def snapshot(self, path: str, name: str) -> None:
        logger.info("Creating snapshot %s@%s", path, name)
        await self._runner.run(["zfs", "snapshot", f"{path}@{name}"])

    async def rollback(self, path: str, name: str) -> None:
        if name not in await self.list_snapshots(path):
            raise NotFoundError(f"Snapshot does not exist: {path}@{name}")
        logger.warning("Rolling back %s to %s", path, name)
        await self._runner.run(["zfs", "rollback", "-r", f"{path}@{name}"])

    async def list_snapshots(self, path: str) -> list[str]:
        result = await self._runner.run(
            ["zfs", "list", "-H", "-t", "snapshot", "-o", "name", "-s", "creation", "-r", path],
            check=False,
        )
        if not result.ok:
            return []
        prefix = f"{path}@"
        return [
            line.strip()[len(prefix):]
            for line in result.stdout.splitlines()
            if line.strip().startswith(prefix)
        ]

    async def set_ownership(self, path: str, mapping: str) -> None:
        mount = self.mountpoint(path)
        logger.info("Setting ownership of %s to %s", mount, mapping)
        await self._runner.run(["chown", "-R", mapping, mount])
        await self._runner.run(["chmod", "-R", "755", mount])
