"""Station lifecycle orchestrator.

Provisioning runs a fixed sequence of steps:

  1. validated           : id, name, address, pool health and capacity
  2. storage_provisioned : dataset with quota and media tuning, ownership
  3. compute_provisioned : LXC container
  4. storage_attached    : bind-mount the dataset into the container
  5. compute_running     : start and wait for the init system
  6. system_bootstrapped : base packages and timezone
  7. platform_installed  : platform installer
  8. registered          : inventory record written

A failed step stops the sequence and leaves earlier artifacts in place.
Every step checks before it acts, so running ``provision(spec, resume=True)``
again after a failure picks up where the previous attempt stopped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

from radiostack.allocator import ResourceAllocator, default_suffix, derive_address
from radiostack.collaborators.base import ComputeCollaborator, StorageCollaborator
from radiostack.collaborators.proxmox import config_address
from radiostack.collaborators.zfs import parse_size
from radiostack.config import RadioStackConfig
from radiostack.errors import (
    ConfirmationDeclined,
    ConflictError,
    NotFoundError,
    RadioStackError,
    ResourceError,
    StoreIOError,
    ValidationError,
    error_kind,
)
from radiostack.inventory.base import InventoryStore
from radiostack.models import (
    HealthState,
    OperationOutcome,
    Platform,
    StationRecord,
    StationSpec,
    StationStatus,
    station_hostname,
    validate_station_id,
    validate_station_name,
)
from radiostack.platforms import PlatformInstaller, get_installer
from radiostack.probe import probe_station

logger = logging.getLogger(__name__)

BACKUP_MODES = ("compute", "application", "full")

PROVISION_STEPS: list[tuple[str, str]] = [
    ("validated", "Validating environment"),
    ("storage_provisioned", "Creating media dataset"),
    ("compute_provisioned", "Creating container"),
    ("storage_attached", "Attaching media storage"),
    ("compute_running", "Starting container"),
    ("system_bootstrapped", "Setting up container system"),
    ("platform_installed", "Installing platform"),
    ("registered", "Adding to inventory"),
]


@dataclass
class ProvisionStep:
    name: str
    status: str = "pending"  # pending, running, done, failed, skipped
    detail: str = ""


@dataclass
class ProvisionResult:
    station_id: int
    success: bool = False
    steps: list[ProvisionStep] = field(default_factory=list)
    error: str = ""
    error_kind: str = ""
    record: StationRecord | None = None

    @property
    def state(self) -> str:
        """Last completed step, or ``failed``."""
        if not self.success and self.error:
            return "failed"
        done = [s.name for s in self.steps if s.status in ("done", "skipped")]
        return done[-1] if done else "requested"

    def step(self, name: str) -> ProvisionStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)

    def to_outcome(self) -> OperationOutcome:
        return OperationOutcome(
            station_id=self.station_id,
            operation="deploy",
            success=self.success,
            error_kind=self.error_kind,
            message=self.error or "deployed",
            details={"steps": {s.name: s.status for s in self.steps}},
        )


@dataclass
class TeardownResult:
    station_id: int
    hostname: str = ""
    container_destroyed: bool = False
    record_removed: bool = False
    volume_path: str = ""
    volume_destroyed: bool = False

    @property
    def volume_preserved(self) -> bool:
        return bool(self.volume_path) and not self.volume_destroyed

    def to_outcome(self) -> OperationOutcome:
        message = f"Station {self.station_id} removed"
        if self.volume_preserved:
            message += f"; data preserved at {self.volume_path}"
        return OperationOutcome(
            station_id=self.station_id,
            operation="remove",
            success=True,
            message=message,
            details={
                "container_destroyed": self.container_destroyed,
                "record_removed": self.record_removed,
                "volume_path": self.volume_path,
                "volume_destroyed": self.volume_destroyed,
            },
        )


@dataclass
class SubOperation:
    name: str
    success: bool
    message: str = ""
    error_kind: str = ""


@dataclass
class BackupReport:
    """Per-sub-operation result of a backup; partial failures stay visible."""

    station_id: int
    mode: str
    results: list[SubOperation] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.results) and all(r.success for r in self.results)

    def to_outcome(self) -> OperationOutcome:
        failed = [r for r in self.results if not r.success]
        return OperationOutcome(
            station_id=self.station_id,
            operation="backup",
            success=self.success,
            error_kind=failed[0].error_kind if failed else "",
            message="; ".join(f"{r.name}: {r.message}" for r in self.results),
            details={r.name: r.success for r in self.results},
        )


class Confirmer(Protocol):
    """Asks the operator to approve a destructive action."""

    def confirm(self, prompt: str) -> bool:
        ...


class AutoConfirmer:
    """Answers every prompt with a fixed value (non-interactive callers)."""

    def __init__(self, answer: bool = True) -> None:
        self.answer = answer
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.answer


InstallerFactory = Callable[[Platform, ComputeCollaborator], PlatformInstaller]
ProgressCallback = Callable[[int, ProvisionStep], None]


def _default_installer_factory(config: RadioStackConfig) -> InstallerFactory:
    def factory(platform: Platform, compute: ComputeCollaborator) -> PlatformInstaller:
        install_path = None
        if platform.value in config.platforms:
            install_path = config.platforms[platform.value].install_path
        return get_installer(platform, compute, install_path=install_path)
    return factory


class LifecycleOrchestrator:
    """Drives one station at a time through provisioning and teardown."""

    def __init__(
        self,
        config: RadioStackConfig,
        store: InventoryStore,
        compute: ComputeCollaborator,
        storage: StorageCollaborator,
        installer_factory: InstallerFactory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.store = store
        self.compute = compute
        self.storage = storage
        self.allocator = ResourceAllocator(store, compute)
        self._installer_factory = installer_factory or _default_installer_factory(config)
        self._sleep = sleep
        self._clock = clock
        self._progress_callbacks: list[ProgressCallback] = []

    def on_progress(self, callback: ProgressCallback) -> None:
        """Register a callback for provisioning progress updates."""
        self._progress_callbacks.append(callback)

    def installer(self, platform: Platform | str) -> PlatformInstaller:
        return self._installer_factory(Platform.parse(platform), self.compute)

    # ── Planning ──────────────────────────────────────────────────

    async def next_id(self, platform: Platform | str) -> int:
        defaults = self.config.platform_defaults(platform)
        return await self.allocator.find_available_id(
            defaults.id_range_start, defaults.id_range_end
        )

    async def plan(
        self,
        platform: Platform | str,
        station_name: str,
        station_id: int | None = None,
        cores: int | None = None,
        memory_mb: int | None = None,
        quota: str | None = None,
        address_suffix: int | None = None,
        version: str | None = None,
    ) -> StationSpec:
        """Resolve a deployment request into a :class:`StationSpec`."""
        platform = Platform.parse(platform)
        defaults = self.config.platform_defaults(platform)
        name = validate_station_name(station_name)

        if station_id is None:
            station_id = await self.allocator.find_available_id(
                defaults.id_range_start, defaults.id_range_end
            )
        station_id = validate_station_id(station_id)

        suffix = default_suffix(station_id) if address_suffix is None else int(address_suffix)
        address = derive_address(self.config.network, suffix)

        cores = defaults.cores if cores is None else int(cores)
        memory_mb = defaults.memory_mb if memory_mb is None else int(memory_mb)
        if cores < 1:
            raise ValidationError(f"Cores must be at least 1: {cores}")
        if memory_mb < 256:
            raise ValidationError(f"Memory must be at least 256 MB: {memory_mb}")
        quota = quota or defaults.quota
        parse_size(quota)

        dataset = self.config.dataset_path(platform, name)
        return StationSpec(
            id=station_id,
            station_name=name,
            platform=platform,
            cores=cores,
            memory_mb=memory_mb,
            storage_quota=quota,
            address_suffix=suffix,
            hostname=station_hostname(platform, name),
            address=address,
            dataset_path=dataset,
            host_path=self.storage.mountpoint(dataset),
            mount_path=defaults.mount_path,
            install_path=defaults.install_path,
            version=version or defaults.version,
            description=f"{platform.value} radio station - {name}",
        )

    # ── Provisioning ──────────────────────────────────────────────

    async def provision(self, spec: StationSpec, resume: bool = False) -> ProvisionResult:
        """Run the provisioning sequence for *spec*."""
        result = ProvisionResult(station_id=spec.id)
        steps = [ProvisionStep(name, detail=detail) for name, detail in PROVISION_STEPS]
        result.steps = steps
        handlers = [
            self._step_validate,
            self._step_storage,
            self._step_compute,
            self._step_attach,
            self._step_start,
            self._step_bootstrap,
            self._step_install,
            self._step_register,
        ]

        logger.info(
            "Deploying %s station %s (CTID %d, %s)",
            spec.platform.value, spec.station_name, spec.id, spec.address,
        )
        try:
            for step, handler in zip(steps, handlers):
                self._update_step(spec.id, step, "running")
                skipped = await handler(spec, resume)
                if skipped:
                    self._update_step(spec.id, step, "skipped", skipped)
                else:
                    self._update_step(spec.id, step, "done")
            result.success = True
            result.record = self.store.get(spec.id)
            logger.info("Deployment of %s complete (CTID %d)", spec.hostname, spec.id)
        except Exception as exc:
            result.error = str(exc)
            result.error_kind = error_kind(exc)
            if isinstance(exc, StoreIOError):
                logger.error(
                    "Station %d was provisioned but the inventory write failed: %s. "
                    "Re-run with resume to register it.", spec.id, exc,
                )
            elif isinstance(exc, RadioStackError):
                logger.error("Deployment of %s failed: %s", spec.hostname, exc)
            else:
                logger.exception("Deployment of %s failed", spec.hostname)
            for step in steps:
                if step.status == "running":
                    self._update_step(spec.id, step, "failed", str(exc))
                elif step.status == "pending":
                    step.status = "skipped"
        return result

    async def _step_validate(self, spec: StationSpec, resume: bool) -> str:
        validate_station_id(spec.id)
        validate_station_name(spec.station_name)
        derive_address(self.config.network, spec.address_suffix)
        if spec.hostname != station_hostname(spec.platform, spec.station_name):
            raise ValidationError(f"Hostname does not match station name: {spec.hostname}")

        if self.store.contains(spec.id):
            raise ConflictError(f"Station {spec.id} already exists in inventory")
        for record in self.store.list():
            if record.hostname == spec.hostname:
                raise ConflictError(
                    f"Hostname {spec.hostname} already used by station {record.id}"
                )
            if record.address == spec.address:
                raise ConflictError(
                    f"Address {spec.address} already used by station {record.id}"
                )

        if await self.compute.exists(spec.id):
            if not resume:
                raise ConflictError(f"Container {spec.id} already exists")
            existing = (await self.compute.config(spec.id)).get("hostname", "")
            if existing != spec.hostname:
                raise ConflictError(
                    f"Container {spec.id} exists with hostname {existing!r}, "
                    f"not {spec.hostname!r}"
                )
            logger.warning("Resuming deployment into existing container %d", spec.id)

        pool = self.config.pool
        if not await self.storage.pool_healthy(pool):
            raise ResourceError(f"Storage pool {pool} is missing or not healthy")
        if not await self.storage.volume_exists(spec.dataset_path):
            needed = parse_size(spec.storage_quota)
            free = await self.storage.pool_free_capacity(pool)
            if free < needed:
                raise ResourceError(
                    f"Not enough free space in {pool}: need {spec.storage_quota}, "
                    f"{free} bytes free"
                )
        return ""

    async def _step_storage(self, spec: StationSpec, resume: bool) -> str:
        skipped = ""
        record_size = self.config.platform_defaults(spec.platform).record_size
        if await self.storage.volume_exists(spec.dataset_path):
            logger.warning("Dataset already exists: %s", spec.dataset_path)
            skipped = "dataset already exists"
            # A partial create may have left the properties unset.
            await self.storage.tune_volume(spec.dataset_path, spec.storage_quota, record_size)
        else:
            await self.storage.create_volume(spec.dataset_path, spec.storage_quota, record_size)
        await self.storage.set_ownership(spec.dataset_path, self.config.ownership)
        return skipped

    async def _step_compute(self, spec: StationSpec, resume: bool) -> str:
        if await self.compute.exists(spec.id):
            logger.warning("Container %d already exists, skipping creation", spec.id)
            return "container already exists"
        await self.compute.create(spec)
        return ""

    async def _step_attach(self, spec: StationSpec, resume: bool) -> str:
        config = await self.compute.config(spec.id)
        for key, value in config.items():
            if key.startswith("mp") and f"mp={spec.mount_path}" in value:
                if value.split(",", 1)[0] != spec.host_path:
                    raise ConflictError(
                        f"Container {spec.id} already mounts {value.split(',', 1)[0]} "
                        f"at {spec.mount_path}"
                    )
                logger.warning("Mount point %s already attached to %d", spec.mount_path, spec.id)
                return "mount already attached"
        await self.compute.attach_volume(spec.id, spec.host_path, spec.mount_path)
        return ""

    async def _step_start(self, spec: StationSpec, resume: bool) -> str:
        skipped = ""
        if await self.compute.status(spec.id) == "running":
            skipped = "container already running"
        else:
            await self.compute.start(spec.id)
        await self.wait_until_healthy(spec.id)
        return skipped

    async def _step_bootstrap(self, spec: StationSpec, resume: bool) -> str:
        await self.compute.exec_bootstrap(spec.id)
        return ""

    async def _step_install(self, spec: StationSpec, resume: bool) -> str:
        installer = self.installer(spec.platform)
        if await installer.is_installed(spec.id):
            logger.warning("%s already installed in %d", spec.platform.value, spec.id)
            return "platform already installed"
        await installer.install(spec.id, spec.mount_path, spec.install_path, spec.version)
        return ""

    async def _step_register(self, spec: StationSpec, resume: bool) -> str:
        self.store.upsert(spec.to_record(StationStatus.ACTIVE))
        return ""

    async def wait_until_healthy(self, station_id: int) -> HealthState:
        """Poll the init system until running or degraded.

        On timeout a warning is logged and the last state is returned.
        """
        attempts = max(1, self.config.boot_wait_attempts)
        state = HealthState.UNKNOWN
        for attempt in range(attempts):
            state = await self.compute.is_healthy(station_id)
            if state in (HealthState.RUNNING, HealthState.DEGRADED):
                logger.info("Container %d is up (%s)", station_id, state.value)
                return state
            if attempt < attempts - 1:
                await self._sleep(self.config.boot_wait_interval)
        logger.warning(
            "Container %d not ready after %.0fs (last state: %s), continuing",
            station_id, attempts * self.config.boot_wait_interval, state.value,
        )
        return state

    def _update_step(
        self,
        station_id: int,
        step: ProvisionStep,
        status: str,
        detail: str = "",
    ) -> None:
        """Update step status and notify callbacks."""
        step.status = status
        if detail:
            step.detail = detail
        for cb in self._progress_callbacks:
            try:
                cb(station_id, step)
            except Exception:
                logger.exception("Error in provision progress callback")

    # ── Teardown ──────────────────────────────────────────────────

    async def _target(self, station_id: int) -> tuple[Platform | None, str, StationRecord | None]:
        """Resolve ``(platform, hostname, record)`` from the inventory or the container."""
        try:
            record = self.store.get(station_id)
            return record.platform, record.hostname, record
        except NotFoundError:
            pass
        if not await self.compute.exists(station_id):
            raise NotFoundError(f"Station {station_id} not found in inventory or on host")
        hostname = (await self.compute.config(station_id)).get("hostname", "")
        platform_name, _, _ = hostname.partition("-")
        try:
            platform = Platform.parse(platform_name)
        except ValidationError:
            platform = None
        logger.warning("Container %d is not in inventory (hostname %s)", station_id, hostname)
        return platform, hostname, None

    async def teardown(
        self,
        station_id: int,
        remove_data: bool = False,
        force: bool = False,
        confirmer: Confirmer | None = None,
    ) -> TeardownResult:
        """Stop and destroy a station, then drop its inventory record."""
        station_id = validate_station_id(station_id)
        confirmer = confirmer or AutoConfirmer(False)
        platform, hostname, record = await self._target(station_id)
        name = record.station_name if record else hostname.partition("-")[2]
        volume = self.config.dataset_path(platform, name) if platform and name else ""

        result = TeardownResult(station_id=station_id, hostname=hostname)
        logger.warning("The following will be removed:")
        logger.warning("  Container: %d (%s)", station_id, hostname)
        if volume:
            if remove_data:
                logger.warning("  Dataset:   %s (ALL DATA WILL BE LOST)", volume)
            else:
                logger.warning("  Dataset:   %s (preserved)", volume)

        if not force and not confirmer.confirm(f"Remove station {station_id} ({hostname})?"):
            raise ConfirmationDeclined(f"Removal of station {station_id} cancelled")

        state = await self.compute.status(station_id)
        if state == "running":
            await self.compute.stop(station_id, timeout=self.config.stop_timeout)
        if state != "missing":
            await self.compute.destroy(station_id)
            result.container_destroyed = True
        else:
            logger.warning("Container %d does not exist, skipping destroy", station_id)

        result.record_removed = self.store.remove(station_id)

        if volume and await self.storage.volume_exists(volume):
            result.volume_path = volume
            if remove_data and (
                force or confirmer.confirm(f"Permanently delete all data in {volume}?")
            ):
                await self.storage.destroy_volume(volume)
                result.volume_destroyed = True
            else:
                logger.info("Media data preserved at: %s", volume)

        logger.info("Station %d removed", station_id)
        return result

    # ── Management ────────────────────────────────────────────────

    async def _require_container(self, station_id: int) -> None:
        if not await self.compute.exists(station_id):
            raise NotFoundError(f"Container {station_id} does not exist")

    async def update(self, station_id: int) -> OperationOutcome:
        record = self.store.get(station_id)
        await self._require_container(record.id)
        installer = self.installer(record.platform)
        await installer.update(record.id)
        logger.info("%s updated successfully", record.hostname)
        return OperationOutcome(record.id, "update", True, message=f"{record.hostname} updated")

    async def backup(self, station_id: int, mode: str = "full") -> BackupReport:
        """Back up a station; each sub-operation succeeds or fails on its own."""
        if mode not in BACKUP_MODES:
            raise ValidationError(f"Unknown backup mode '{mode}'. Choose from: {', '.join(BACKUP_MODES)}")
        record = self.store.get(station_id)
        await self._require_container(record.id)
        report = BackupReport(station_id=record.id, mode=mode)

        async def run(name: str, op: Callable[[], Awaitable[Any]], message: str) -> None:
            try:
                await op()
            except Exception as exc:
                logger.error("%s backup of station %d failed: %s", name, record.id, exc)
                report.results.append(SubOperation(name, False, str(exc), error_kind(exc)))
            else:
                report.results.append(SubOperation(name, True, message))

        if mode in ("compute", "full"):
            await run(
                "compute",
                lambda: self.compute.snapshot_backup(record.id),
                f"container backup stored on {self.config.backup_storage}",
            )
        if mode in ("application", "full"):
            installer = self.installer(record.platform)
            await run("application", lambda: installer.backup(record.id), "platform backup created")
        if mode == "full":
            dataset = self.config.dataset_path(record.platform, record.station_name)
            snap = f"backup-{self._clock().strftime('%Y%m%d-%H%M%S')}"
            await run("volume", lambda: self.storage.snapshot(dataset, snap), f"{dataset}@{snap}")
        return report

    async def status(self, station_id: int, probe: bool = False) -> dict[str, Any]:
        record = self.store.get(station_id)
        container = await self.compute.status(record.id)
        info: dict[str, Any] = {
            "id": record.id,
            "hostname": record.hostname,
            "platform": record.platform.value,
            "address": record.address,
            "status": record.status.value,
            "container": container,
        }
        if container == "running":
            info["health"] = (await self.compute.is_healthy(record.id)).value
            if probe:
                defaults = self.config.platforms.get(record.platform.value)
                port = defaults.web_port if defaults else 80
                info["web"] = (await probe_station(record.address, port=port)).to_dict()
        return info

    async def info(self, station_id: int) -> dict[str, Any]:
        record = self.store.get(station_id)
        dataset = self.config.dataset_path(record.platform, record.station_name)
        details: dict[str, Any] = record.to_dict()
        details["dataset"] = dataset
        details["dataset_exists"] = await self.storage.volume_exists(dataset)
        details["snapshots"] = (
            await self.storage.list_snapshots(dataset) if details["dataset_exists"] else []
        )
        details["container"] = await self.compute.status(record.id)
        if details["container"] != "missing":
            config = await self.compute.config(record.id)
            details["resources"] = {
                k: config[k] for k in ("cores", "memory", "swap", "rootfs") if k in config
            }
            details["mounts"] = {k: v for k, v in config.items() if k.startswith("mp")}
            details["configured_address"] = config_address(config)
        if details["container"] == "running":
            installer = self.installer(record.platform)
            details["platform_version"] = await installer.installed_version(record.id)
        return details

    async def logs(self, station_id: int, lines: int = 100, service: str = "") -> str:
        record = self.store.get(station_id)
        await self._require_container(record.id)
        return await self.installer(record.platform).logs(record.id, lines=lines, service=service)

    async def set_status(self, station_id: int, status: StationStatus | str) -> StationRecord:
        return self.store.update_status(station_id, status)

    async def restart(self, station_id: int) -> HealthState:
        record = self.store.get(station_id)
        await self._require_container(record.id)
        if await self.compute.status(record.id) == "running":
            await self.compute.stop(record.id, timeout=self.config.stop_timeout)
        await self.compute.start(record.id)
        return await self.wait_until_healthy(record.id)

    # ── Media volume ──────────────────────────────────────────────

    async def _require_volume(self, record: StationRecord) -> str:
        dataset = self.config.dataset_path(record.platform, record.station_name)
        if not await self.storage.volume_exists(dataset):
            raise NotFoundError(f"Dataset does not exist: {dataset}")
        return dataset

    async def resize(self, station_id: int, quota: str) -> OperationOutcome:
        """Change the media quota of an existing station."""
        parse_size(quota)
        record = self.store.get(station_id)
        dataset = await self._require_volume(record)
        logger.info("Resizing dataset %s to %s", dataset, quota)
        await self.storage.set_quota(dataset, quota)
        return OperationOutcome(
            record.id,
            "resize",
            True,
            message=f"{dataset} quota set to {quota}",
            details={"dataset": dataset, "quota": quota},
        )

    async def restore(
        self,
        station_id: int,
        snapshot: str,
        force: bool = False,
        confirmer: Confirmer | None = None,
    ) -> OperationOutcome:
        """Roll the media volume back to *snapshot*.

        Changes made after the snapshot are lost, so the caller must confirm
        unless *force* is set.
        """
        record = self.store.get(station_id)
        dataset = await self._require_volume(record)
        if snapshot not in await self.storage.list_snapshots(dataset):
            raise NotFoundError(f"Snapshot does not exist: {dataset}@{snapshot}")
        logger.warning("This will revert all changes to %s since %s", dataset, snapshot)
        confirmer = confirmer or AutoConfirmer(False)
        if not force and not confirmer.confirm(f"Rollback to snapshot {snapshot}?"):
            raise ConfirmationDeclined("Rollback cancelled")
        await self.storage.rollback(dataset, snapshot)
        logger.info("Rollback of %s to %s completed", dataset, snapshot)
        return OperationOutcome(
            record.id,
            "restore",
            True,
            message=f"{dataset} rolled back to {snapshot}",
            details={"dataset": dataset, "snapshot": snapshot},
        )

    async def list_backups(self, station_id: int | None = None) -> list[str]:
        """Container backups on the backup storage, for one station or all."""
        if station_id is not None:
            station_id = validate_station_id(station_id)
        backups = await self.compute.list_backups(station_id)
        if not backups:
            logger.warning(
                "No backups found%s", f" for container {station_id}" if station_id else ""
            )
        return backups
