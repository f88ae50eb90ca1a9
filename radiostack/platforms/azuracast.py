"""AzuraCast installer, driven through the upstream ``docker.sh`` helper."""

from __future__ import annotations

import logging

from radiostack.errors import NotFoundError
from radiostack.models import Platform
from radiostack.platforms.base import PlatformInstaller, q

logger = logging.getLogger(__name__)

DOCKER_SH_URL = "https://raw.githubusercontent.com/AzuraCast/AzuraCast/main/docker.sh"


class AzuraCastInstaller(PlatformInstaller):
    """AzuraCast runs from its install directory, which is also the media mount."""

    platform = Platform.AZURACAST

    async def install(
        self,
        station_id: int,
        mount_path: str,
        install_path: str,
        version: str = "stable",
    ) -> None:
        await self.setup_docker(station_id)
        logger.info("Downloading and installing AzuraCast in container %d", station_id)
        script = (
            "set -e\n"
            f"mkdir -p {q(install_path)}\n"
            f"cd {q(install_path)}\n"
            f"curl -fsSL {DOCKER_SH_URL} > docker.sh\n"
            "chmod a+x docker.sh\n"
            "export DEBIAN_FRONTEND=noninteractive\n"
            "yes 'Y' | ./docker.sh setup-release\n"
            "yes '' | ./docker.sh install\n"
        )
        await self._shell(station_id, script)
        self.install_path = install_path
        logger.info("AzuraCast installed in container %d", station_id)

    async def is_installed(self, station_id: int) -> bool:
        return await self._file_exists(station_id, f"{self.install_path}/docker.sh")

    async def _docker_sh(self, station_id: int, *args: str) -> str:
        if not await self.is_installed(station_id):
            raise NotFoundError(f"AzuraCast installation not found in container {station_id}")
        return await self._shell(
            station_id, f"cd {q(self.install_path)} && ./docker.sh {' '.join(args)}"
        )

    async def update(self, station_id: int) -> None:
        logger.info("Updating AzuraCast in container %d", station_id)
        await self._docker_sh(station_id, "update-self")
        await self._docker_sh(station_id, "update")

    async def backup(self, station_id: int) -> str:
        logger.info("Creating AzuraCast backup in container %d", station_id)
        return await self._docker_sh(station_id, "backup")

    async def logs(self, station_id: int, lines: int = 100, service: str = "") -> str:
        if not await self.is_installed(station_id):
            raise NotFoundError(f"AzuraCast installation not found in container {station_id}")
        script = f"cd {q(self.install_path)} && docker compose logs --tail={int(lines)}"
        if service:
            script += f" {q(service)}"
        return await self._shell(station_id, script)
