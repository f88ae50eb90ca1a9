"""Data models for stations, deployment plans and operation outcomes."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from radiostack.errors import ValidationError

MIN_STATION_ID = 100
MAX_STATION_ID = 999_999

_STATION_NAME_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")


class Platform(str, Enum):
    AZURACAST = "azuracast"
    LIBRETIME = "libretime"
    ICECAST = "icecast"  # reserved, no installer yet

    @classmethod
    def parse(cls, value: str | Platform) -> Platform:
        if isinstance(value, Platform):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ValidationError(f"Unknown platform '{value}'. Choose from: {choices}") from None


class StationStatus(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"
    ERROR = "error"
    MAINTENANCE = "maintenance"

    @classmethod
    def parse(cls, value: str | StationStatus) -> StationStatus:
        if isinstance(value, StationStatus):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise ValidationError(f"Unknown status '{value}'. Choose from: {choices}") from None


class HealthState(str, Enum):
    """Init-system state reported from inside a compute unit."""

    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


# ── Validation helpers ────────────────────────────────────────────


def validate_station_id(station_id: Any) -> int:
    """Coerce *station_id* to int and check the 100–999999 range."""
    if isinstance(station_id, bool):
        raise ValidationError(f"Station ID must be numeric: {station_id!r}")
    try:
        value = int(str(station_id).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Station ID must be numeric: {station_id!r}") from None
    if not MIN_STATION_ID <= value <= MAX_STATION_ID:
        raise ValidationError(
            f"Station ID must be between {MIN_STATION_ID} and {MAX_STATION_ID}: {value}"
        )
    return value


def validate_station_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Station name is required")
    if not _STATION_NAME_RE.match(name):
        raise ValidationError(
            f"Station name must be lowercase letters, digits and dashes: {name!r}"
        )
    return name


def validate_address(address: str) -> str:
    """Check that *address* is a dotted quad with every octet in 0–255."""
    parts = (address or "").split(".")
    if len(parts) != 4 or not all(p.isdigit() and len(p) <= 3 for p in parts):
        raise ValidationError(f"Invalid IP address format: {address!r}")
    for octet in parts:
        if int(octet) > 255:
            raise ValidationError(f"Invalid IP address (octet > 255): {address}")
    return address


# ── Station record ────────────────────────────────────────────────


@dataclass
class StationRecord:
    """One inventory row. ``created`` is set once and never changed."""

    id: int
    platform: Platform
    hostname: str
    address: str
    description: str = ""
    created: date = field(default_factory=date.today)
    status: StationStatus = StationStatus.ACTIVE

    def __post_init__(self) -> None:
        self.id = validate_station_id(self.id)
        self.platform = Platform.parse(self.platform)
        self.status = StationStatus.parse(self.status)
        if isinstance(self.created, str):
            try:
                self.created = date.fromisoformat(self.created)
            except ValueError:
                raise ValidationError(f"Invalid created date: {self.created!r}") from None
        if not self.hostname:
            raise ValidationError("Hostname is required")
        validate_address(self.address)

    @property
    def station_name(self) -> str:
        """Station name recovered from ``<platform>-<name>``."""
        prefix = f"{self.platform.value}-"
        if self.hostname.startswith(prefix):
            return self.hostname[len(prefix):]
        return self.hostname

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform.value,
            "hostname": self.hostname,
            "address": self.address,
            "description": self.description,
            "created": self.created.isoformat(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StationRecord:
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def station_hostname(platform: Platform, station_name: str) -> str:
    return f"{platform.value}-{station_name}"


# ── Deployment plan ───────────────────────────────────────────────


@dataclass
class StationSpec:
    """Resolved plan for a single deployment. Never persisted."""

    id: int
    station_name: str
    platform: Platform
    cores: int
    memory_mb: int
    storage_quota: str
    address_suffix: int
    hostname: str
    address: str
    dataset_path: str
    host_path: str
    mount_path: str
    install_path: str
    version: str = ""
    description: str = ""

    @property
    def swap_mb(self) -> int:
        return self.memory_mb // 4

    def to_record(self, status: StationStatus = StationStatus.ACTIVE) -> StationRecord:
        return StationRecord(
            id=self.id,
            platform=self.platform,
            hostname=self.hostname,
            address=self.address,
            description=self.description or f"Station: {self.station_name}",
            status=status,
        )


# ── Outcomes ──────────────────────────────────────────────────────


@dataclass
class OperationOutcome:
    """Structured result of one operation against one station."""

    station_id: int
    operation: str
    success: bool
    error_kind: str = ""
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)
