"""LibreTime installer using the upstream docker-compose setup.

Secrets for Postgres, RabbitMQ and Icecast are generated here and written
to ``<install>/.env`` inside the container; the compose file and config
template are fetched for the requested release.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime

from radiostack.errors import NotFoundError
from radiostack.models import Platform
from radiostack.platforms.base import PlatformInstaller, q

logger = logging.getLogger(__name__)

RAW_URL = "https://raw.githubusercontent.com/libretime/libretime/{version}/{path}"
BACKUP_DIR = "/root/libretime-backups"
_MIGRATE = "docker compose exec -T libretime bash -c 'cd /var/www/libretime && php artisan migrate --force'"


def render_env(version: str) -> str:
    """Build the ``.env`` contents with freshly generated secrets."""
    def secret() -> str:
        return secrets.token_urlsafe(32)

    return (
        f"LIBRETIME_VERSION={version}\n"
        "\n# Database Configuration\n"
        f"POSTGRES_PASSWORD={secret()}\n"
        "\n# RabbitMQ Configuration\n"
        f"RABBITMQ_DEFAULT_PASS={secret()}\n"
        "\n# Icecast Configuration\n"
        f"ICECAST_SOURCE_PASSWORD={secret()}\n"
        f"ICECAST_ADMIN_PASSWORD={secret()}\n"
        f"ICECAST_RELAY_PASSWORD={secret()}\n"
    )


class LibreTimeInstaller(PlatformInstaller):
    platform = Platform.LIBRETIME

    def _compose(self) -> str:
        return f"{self.install_path}/docker-compose.yml"

    async def install(
        self,
        station_id: int,
        mount_path: str,
        install_path: str,
        version: str = "stable",
    ) -> None:
        await self.setup_docker(station_id)
        self.install_path = install_path
        version = version or "stable"
        logger.info("Installing LibreTime %s in container %d", version, station_id)

        await self._shell(
            station_id,
            f"mkdir -p {q(install_path)} && cat > {q(install_path + '/.env')}"
            f" && chmod 600 {q(install_path + '/.env')}",
            input=render_env(version),
        )
        compose_url = RAW_URL.format(version=version, path="docker-compose.yml")
        template_url = RAW_URL.format(version=version, path="docker/config.template.yml")
        script = (
            "set -e\n"
            f"cd {q(install_path)}\n"
            f"wget -q -O docker-compose.yml {q(compose_url)}\n"
            f"wget -q -O config.template.yml {q(template_url)}\n"
            "set -a; . ./.env; set +a\n"
            "envsubst < config.template.yml > config.yml\n"
            f"sed -i 's|storage_path:.*|storage_path: {mount_path}|g' config.yml\n"
            f"mkdir -p {q(mount_path)}\n"
            f"chown -R 1000:1000 {q(mount_path)}\n"
            "docker compose up -d\n"
        )
        await self._shell(station_id, script)
        await self._shell(station_id, f"cd {q(install_path)} && {_MIGRATE}")
        logger.info("LibreTime installed in container %d", station_id)

    async def is_installed(self, station_id: int) -> bool:
        return await self._file_exists(station_id, self._compose())

    async def _require_install(self, station_id: int) -> None:
        if not await self.is_installed(station_id):
            raise NotFoundError(f"LibreTime installation not found in container {station_id}")

    async def update(self, station_id: int) -> None:
        await self._require_install(station_id)
        logger.info("Updating LibreTime in container %d", station_id)
        await self._shell(
            station_id,
            f"set -e\ncd {q(self.install_path)}\n"
            f"docker compose pull\ndocker compose up -d\n{_MIGRATE}\n",
        )

    async def backup(self, station_id: int) -> str:
        await self._require_install(station_id)
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        logger.info("Creating LibreTime backup in container %d", station_id)
        return await self._shell(
            station_id,
            "set -e\n"
            f"mkdir -p {BACKUP_DIR}\n"
            f"cd {q(self.install_path)}\n"
            "docker compose exec -T postgres pg_dump -U libretime libretime"
            f" > {BACKUP_DIR}/libretime-db-{ts}.sql\n"
            f"tar czf {BACKUP_DIR}/libretime-config-{ts}.tar.gz .env config.yml docker-compose.yml\n"
            f"ls -lh {BACKUP_DIR}/*{ts}*\n",
        )

    async def logs(self, station_id: int, lines: int = 100, service: str = "") -> str:
        await self._require_install(station_id)
        argv = ["docker", "compose", "-f", self._compose(), "logs", f"--tail={int(lines)}"]
        if service:
            argv.append(service)
        result = await self._compute.exec(station_id, argv)
        return result.stdout
