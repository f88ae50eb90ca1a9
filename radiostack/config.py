"""Configuration for RadioStack.

Values come from three layers, later ones winning:

1. dataclass defaults (the stock single-host Proxmox layout),
2. an optional JSON file (``RADIOSTACK_CONFIG``, default
   ``/etc/radiostack/radiostack.json``),
3. ``RADIOSTACK_<FIELD>`` environment variables.

Usage::

    from radiostack.config import RadioStackConfig
    cfg = RadioStackConfig.load()
    cfg.platform_defaults("azuracast").memory_mb
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from radiostack.errors import ValidationError
from radiostack.models import Platform

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/radiostack/radiostack.json"
_ENV_PREFIX = "RADIOSTACK_"


@dataclass
class PlatformDefaults:
    """Per-platform resource defaults and container layout."""

    cores: int
    memory_mb: int
    quota: str
    id_range_start: int
    id_range_end: int
    mount_path: str
    install_path: str
    version: str = "stable"
    record_size: str = "128k"
    web_port: int = 80


def _default_platforms() -> dict[str, PlatformDefaults]:
    return {
        "azuracast": PlatformDefaults(
            cores=4,
            memory_mb=4092,
            quota="50G",
            id_range_start=300,
            id_range_end=399,
            mount_path="/var/azuracast",
            install_path="/var/azuracast",
        ),
        "libretime": PlatformDefaults(
            cores=4,
            memory_mb=8192,
            quota="300G",
            id_range_start=350,
            id_range_end=359,
            mount_path="/srv/libretime",
            install_path="/opt/libretime",
            web_port=8080,
        ),
    }


@dataclass
class RadioStackConfig:
    """Host layout, inventory location and operator settings."""

    # Inventory
    inventory_file: str = "/etc/radiostack/inventory/stations.csv"
    inventory_backup_dir: str = ""  # default: <inventory dir>/backups
    inventory_backend: str = "csv"  # csv | sqlite
    inventory_backup_keep: int = 10

    # Network
    network: str = "192.168.2"
    gateway: str = "192.168.2.1"
    bridge: str = "vmbr1"
    netmask_bits: int = 24
    nameserver: str = "8.8.8.8"
    searchdomain: str = ""

    # Compute
    template: str = "local:vztmpl/debian-13-standard_13.1-2_amd64.tar.zst"
    rootfs: str = "data:32"
    timezone: str = "America/Argentina/Buenos_Aires"
    stop_timeout: int = 60
    boot_wait_attempts: int = 30
    boot_wait_interval: float = 2.0

    # Storage
    pool: str = "hdd-pool"
    dataset_root: str = "container-data"
    ownership: str = "100000:100000"

    # Backups
    backup_storage: str = "hdd-backups"
    backup_mode: str = "snapshot"
    backup_compress: str = "zstd"

    # Remote execution (empty = run commands locally)
    ssh_host: str = ""
    ssh_username: str = "root"
    ssh_port: int = 22
    ssh_key_path: str = ""

    # Admin API
    admin_username: str = "admin"
    admin_password_hash: str = ""
    jwt_secret: str = "radiostack-change-me"
    jwt_expiry_seconds: int = 86400

    # Bulk operations
    bulk_concurrency: int = 1

    platforms: dict[str, PlatformDefaults] = field(default_factory=_default_platforms)

    # ── Loading ───────────────────────────────────────────────────

    @classmethod
    def load(cls, path: str | Path | None = None) -> RadioStackConfig:
        """Load defaults, then the JSON file, then environment overrides."""
        if path is None:
            path = os.environ.get("RADIOSTACK_CONFIG", DEFAULT_CONFIG_PATH)
        path = Path(path)

        data: dict[str, Any] = {}
        if path.exists():
            logger.info("Loading configuration from %s", path)
            try:
                with open(path) as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                raise ValidationError(f"Cannot read configuration {path}: {exc}") from exc
        else:
            logger.warning("Configuration file not found: %s (using defaults)", path)

        cfg = cls.from_dict(data)
        cfg.apply_env(os.environ)
        return cfg

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RadioStackConfig:
        known = {f.name for f in dataclasses.fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known and k != "platforms"}
        cfg = cls(**filtered)
        for name, overrides in (data.get("platforms") or {}).items():
            base = cfg.platforms.get(name)
            if base is None:
                logger.warning("Ignoring defaults for unsupported platform: %s", name)
                continue
            allowed = {f.name for f in dataclasses.fields(PlatformDefaults)}
            for key in sorted(set(overrides) - allowed):
                logger.warning("Ignoring unknown setting for %s: %s", name, key)
            cfg.platforms[name] = dataclasses.replace(
                base, **{k: v for k, v in overrides.items() if k in allowed}
            )
        return cfg

    def apply_env(self, environ: dict[str, str] | os._Environ) -> None:
        """Override scalar fields from ``RADIOSTACK_<FIELD>`` variables."""
        for f in dataclasses.fields(self):
            if f.name == "platforms":
                continue
            raw = environ.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = getattr(self, f.name)
            try:
                if isinstance(current, bool):
                    value: Any = raw.strip().lower() in ("1", "true", "yes", "on")
                elif isinstance(current, int):
                    value = int(raw)
                elif isinstance(current, float):
                    value = float(raw)
                else:
                    value = raw
            except ValueError:
                raise ValidationError(
                    f"Invalid value for {_ENV_PREFIX}{f.name.upper()}: {raw!r}"
                ) from None
            setattr(self, f.name, value)

    # ── Derived values ────────────────────────────────────────────

    @property
    def backup_dir(self) -> Path:
        if self.inventory_backup_dir:
            return Path(self.inventory_backup_dir)
        return Path(self.inventory_file).parent / "backups"

    def platform_defaults(self, platform: Platform | str) -> PlatformDefaults:
        platform = Platform.parse(platform)
        defaults = self.platforms.get(platform.value)
        if defaults is None:
            raise ValidationError(f"{platform.value} deployment is not yet implemented")
        return defaults

    def dataset_path(self, platform: Platform | str, station_name: str) -> str:
        """ZFS dataset holding a station's media."""
        platform = Platform.parse(platform)
        return f"{self.pool}/{self.dataset_root}/{platform.value}-media/{station_name}"
