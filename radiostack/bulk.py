"""Apply one lifecycle operation across many stations.

Each station is handled on its own: a failure is recorded in the report and
the run moves on. Outcomes are reported in inventory order even when
``concurrency`` > 1 lets stations run side by side.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from radiostack.errors import ConfirmationDeclined, ValidationError, error_kind
from radiostack.models import OperationOutcome, Platform, StationRecord
from radiostack.orchestrator import AutoConfirmer, Confirmer, LifecycleOrchestrator

logger = logging.getLogger(__name__)

PURGE_CONFIRM_WORD = "DELETE"

Operation = Callable[[StationRecord], Awaitable[Any]]


@dataclass
class BulkReport:
    operation: str
    outcomes: list[OperationOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def failed_ids(self) -> list[int]:
        return [o.station_id for o in self.outcomes if not o.success]

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self, include_outcomes: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "operation": self.operation,
            "total": len(self.outcomes),
            "succeeded": self.succeeded,
            "failed": self.failed,
        }
        if include_outcomes:
            data["outcomes"] = [o.to_dict() for o in self.outcomes]
        return data


def _to_outcome(record: StationRecord, operation: str, value: Any) -> OperationOutcome:
    if isinstance(value, OperationOutcome):
        return value
    to_outcome = getattr(value, "to_outcome", None)
    if callable(to_outcome):
        return to_outcome()
    details = value if isinstance(value, dict) else {}
    return OperationOutcome(record.id, operation, True, message="ok", details=details)


class BulkExecutor:
    """Fans an operation out over the inventory with per-station isolation."""

    def __init__(self, orchestrator: LifecycleOrchestrator, concurrency: int = 1) -> None:
        self.orchestrator = orchestrator
        self.concurrency = max(1, concurrency)

    def select(
        self,
        platform: Platform | str | None = None,
        ids: list[int] | None = None,
    ) -> list[StationRecord]:
        """Records in inventory order; no filter selects every station."""
        records = self.orchestrator.store.list(platform)
        if ids is not None:
            wanted = set(ids)
            records = [r for r in records if r.id in wanted]
        return records

    def _resolve(self, operation: str, **kwargs: Any) -> Operation:
        orch = self.orchestrator
        if operation == "update":
            return lambda r: orch.update(r.id)
        if operation == "backup":
            mode = kwargs.get("mode", "full")
            return lambda r: orch.backup(r.id, mode=mode)
        if operation == "status":
            probe = kwargs.get("probe", False)
            return lambda r: orch.status(r.id, probe=probe)
        if operation == "restart":
            return lambda r: orch.restart(r.id)
        if operation == "remove":
            return lambda r: orch.teardown(
                r.id,
                remove_data=kwargs.get("remove_data", False),
                force=kwargs.get("force", False),
                confirmer=kwargs.get("confirmer"),
            )
        raise ValidationError(f"Unsupported bulk operation: {operation}")

    async def run(
        self,
        operation: str | Operation,
        platform: Platform | str | None = None,
        ids: list[int] | None = None,
        name: str = "",
        **kwargs: Any,
    ) -> BulkReport:
        """Run *operation* once per matching station and collect outcomes."""
        if operation == "remove" and platform is None and ids is None:
            if kwargs.pop("confirmation", None) != PURGE_CONFIRM_WORD:
                raise ConfirmationDeclined(
                    f"Removing every station requires the confirmation word {PURGE_CONFIRM_WORD}"
                )
        if callable(operation):
            op, op_name = operation, name or getattr(operation, "__name__", "custom")
        else:
            op, op_name = self._resolve(operation, **kwargs), operation
        records = self.select(platform, ids)
        report = BulkReport(operation=op_name)
        if not records:
            logger.warning("No stations matched for %s", op_name)
            return report

        logger.info("Running %s on %d station(s)", op_name, len(records))
        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes: list[OperationOutcome | None] = [None] * len(records)

        async def worker(index: int, record: StationRecord) -> None:
            async with semaphore:
                logger.info("%s: %s (CTID %d)", op_name, record.hostname, record.id)
                try:
                    outcome = _to_outcome(record, op_name, await op(record))
                except Exception as exc:
                    logger.error("Failed to %s %s: %s", op_name, record.hostname, exc)
                    outcome = OperationOutcome(
                        record.id, op_name, False, error_kind=error_kind(exc), message=str(exc)
                    )
                outcomes[index] = outcome

        if self.concurrency == 1:
            for index, record in enumerate(records):
                await worker(index, record)
        else:
            await asyncio.gather(*(worker(i, r) for i, r in enumerate(records)))

        report.outcomes = [o for o in outcomes if o is not None]
        logger.info(
            "%s complete: %d succeeded, %d failed", op_name, report.succeeded, report.failed
        )
        return report

    async def purge_all(
        self,
        confirmation: str,
        remove_data: bool = False,
        platform: Platform | str | None = None,
        confirmer: Confirmer | None = None,
    ) -> BulkReport:
        """Remove every (matching) station once the operator typed ``DELETE``.

        Data volumes are destroyed only with *remove_data* and a yes from
        *confirmer*, asked once for the whole run.
        """
        if confirmation != PURGE_CONFIRM_WORD:
            raise ConfirmationDeclined("Purge cancelled: confirmation word not entered")
        if remove_data:
            confirmer = confirmer or AutoConfirmer(False)
            if not confirmer.confirm("Also permanently delete ALL station data?"):
                remove_data = False
        logger.warning("Purging all stations%s", " including data" if remove_data else "")
        return await self.run(
            "remove",
            platform=platform,
            remove_data=remove_data,
            force=True,
            confirmation=confirmation,
        )
