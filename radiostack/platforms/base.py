"""Abstract platform installer interface.

Every radio platform (AzuraCast, LibreTime, ...) implements this interface.
The installer runs its commands inside the station container through the
compute collaborator's ``exec``.
"""

from __future__ import annotations

import abc
import logging
import shlex

from radiostack.collaborators.base import ComputeCollaborator
from radiostack.models import Platform

logger = logging.getLogger(__name__)

_DOCKER_SCRIPT = """\
set -e
export DEBIAN_FRONTEND=noninteractive
if command -v docker >/dev/null 2>&1; then
    echo "Docker already installed"
    exit 0
fi
install -m 0755 -d /etc/apt/keyrings
curl -fsSL https://download.docker.com/linux/debian/gpg -o /etc/apt/keyrings/docker.asc
chmod a+r /etc/apt/keyrings/docker.asc
echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.asc] \
https://download.docker.com/linux/debian $(. /etc/os-release && echo "$VERSION_CODENAME") stable" \
    > /etc/apt/sources.list.d/docker.list
apt-get update
apt-get install -y docker-ce docker-ce-cli containerd.io docker-buildx-plugin docker-compose-plugin
systemctl start docker
systemctl enable docker
"""


class PlatformInstaller(abc.ABC):
    """Install and operate one radio platform inside a station container."""

    platform: Platform

    def __init__(self, compute: ComputeCollaborator, install_path: str) -> None:
        self._compute = compute
        self.install_path = install_path

    @abc.abstractmethod
    async def install(
        self,
        station_id: int,
        mount_path: str,
        install_path: str,
        version: str = "stable",
    ) -> None:
        """Download and install the platform. Raises ExternalToolError on failure."""
        raise NotImplementedError

    @abc.abstractmethod
    async def is_installed(self, station_id: int) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    async def update(self, station_id: int) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def backup(self, station_id: int) -> str:
        """Run the platform's own backup. Returns its output."""
        raise NotImplementedError

    @abc.abstractmethod
    async def logs(self, station_id: int, lines: int = 100, service: str = "") -> str:
        raise NotImplementedError

    async def installed_version(self, station_id: int) -> str:
        """Version recorded in the install's ``.env`` file, or ``"unknown"``."""
        env = f"{self.install_path}/.env"
        result = await self._compute.exec(station_id, ["cat", env], check=False)
        if not result.ok:
            return "unknown"
        key = self._version_key()
        for line in result.stdout.splitlines():
            name, sep, value = line.partition("=")
            if sep and name.strip() == key:
                return value.strip() or "unknown"
        return "unknown"

    def _version_key(self) -> str:
        return f"{self.platform.value.upper()}_VERSION"

    # ── Shared helpers ────────────────────────────────────────────

    async def setup_docker(self, station_id: int) -> None:
        """Install Docker from the upstream apt repository (skipped if present)."""
        logger.info("Installing Docker in container %d", station_id)
        await self._compute.exec(station_id, ["bash", "-c", _DOCKER_SCRIPT])

    async def _file_exists(self, station_id: int, path: str) -> bool:
        result = await self._compute.exec(station_id, ["test", "-f", path], check=False)
        return result.ok

    async def _shell(self, station_id: int, script: str, input: str | None = None) -> str:
        result = await self._compute.exec(station_id, ["bash", "-c", script], input=input)
        return result.stdout


def q(value: str) -> str:
    """Shell-quote *value* for embedding in a ``bash -c`` script."""
    return shlex.quote(value)
