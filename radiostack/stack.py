"""RadioStack manager.

Wires configuration, the command runner, the inventory and the host
collaborators into one object. This is the entry point the CLI and the
admin API use.
"""

from __future__ import annotations

import logging
from typing import Any

from radiostack.bulk import BulkExecutor
from radiostack.collaborators.base import ComputeCollaborator, StorageCollaborator
from radiostack.collaborators.proxmox import ProxmoxCompute
from radiostack.collaborators.zfs import ZfsStorage
from radiostack.config import RadioStackConfig
from radiostack.inventory import InventoryStore, ValidationReport, open_store
from radiostack.orchestrator import InstallerFactory, LifecycleOrchestrator
from radiostack.runner import CommandRunner, connect_runner

logger = logging.getLogger(__name__)


class RadioStack:
    """Central manager for all station operations."""

    def __init__(
        self,
        config: RadioStackConfig,
        runner: CommandRunner | None = None,
        store: InventoryStore | None = None,
        compute: ComputeCollaborator | None = None,
        storage: StorageCollaborator | None = None,
        installer_factory: InstallerFactory | None = None,
        **orchestrator_kwargs: Any,
    ) -> None:
        self.config = config
        self.runner = runner
        self.store = store or open_store(config)
        if compute is None or storage is None:
            if runner is None:
                raise ValueError("A command runner is required without explicit collaborators")
            compute = compute or ProxmoxCompute(runner, config)
            storage = storage or ZfsStorage(runner)
        self.compute = compute
        self.storage = storage
        self.orchestrator = LifecycleOrchestrator(
            config, self.store, compute, storage,
            installer_factory=installer_factory,
            **orchestrator_kwargs,
        )
        self.bulk = BulkExecutor(self.orchestrator, concurrency=config.bulk_concurrency)

    @classmethod
    async def open(cls, config: RadioStackConfig | None = None) -> RadioStack:
        """Build a manager from configuration, connecting over SSH if configured."""
        config = config or RadioStackConfig.load()
        runner = await connect_runner(
            ssh_host=config.ssh_host,
            username=config.ssh_username,
            port=config.ssh_port,
            key_path=config.ssh_key_path or None,
        )
        return cls(config, runner=runner)

    async def close(self) -> None:
        if self.runner is not None:
            await self.runner.close()
        close_store = getattr(self.store, "close", None)
        if callable(close_store):
            close_store()

    async def __aenter__(self) -> RadioStack:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Inventory consistency ─────────────────────────────────────

    async def validate_inventory(self) -> ValidationReport:
        """Check the inventory against the containers that actually exist."""
        live = await self.compute.list_ids()
        report = self.store.validate(live.__contains__)
        if report.ok and not report.orphaned_ids:
            logger.info("Inventory validation passed")
        else:
            logger.warning(
                "Inventory validation found %d issue(s), %d orphan(s)",
                report.issues, len(report.orphaned_ids),
            )
        return report

    async def cleanup_inventory(self) -> list[int]:
        """Drop inventory rows whose container no longer exists."""
        live = await self.compute.list_ids()
        return self.store.reconcile(live.__contains__)
