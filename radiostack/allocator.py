"""Station identifier and network address allocation.

``find_available_id`` consults both the inventory and the live container
set. Nothing is reserved: another deployment can claim the returned id
before it is used, so the orchestrator re-validates before provisioning.
"""

from __future__ import annotations

import logging

from radiostack.collaborators.base import ComputeCollaborator
from radiostack.errors import RangeExhausted, ValidationError
from radiostack.inventory.base import InventoryStore
from radiostack.models import MAX_STATION_ID, MIN_STATION_ID, validate_address

logger = logging.getLogger(__name__)


def derive_address(network: str, suffix: int | str) -> str:
    """Build ``<network>.<suffix>`` and check every octet is 0–255."""
    network = (network or "").strip().rstrip(".")
    if len(network.split(".")) != 3:
        raise ValidationError(f"Network must be the first three octets (e.g. 192.168.2): {network!r}")
    try:
        octet = int(str(suffix).strip())
    except ValueError:
        raise ValidationError(f"Address suffix must be numeric: {suffix!r}") from None
    if not 0 <= octet <= 255:
        raise ValidationError(
            f"Address suffix {octet} is not a valid last octet (0-255); "
            "supply an explicit suffix"
        )
    return validate_address(f"{network}.{octet}")


def default_suffix(station_id: int) -> int:
    """Use the station id as address suffix when it fits in one octet."""
    if station_id > 255:
        raise ValidationError(
            f"Station ID {station_id} cannot be used as an address suffix (> 255); "
            "supply an explicit address suffix"
        )
    return station_id


class ResourceAllocator:
    """Finds unused station ids across the inventory and the live host."""

    def __init__(self, store: InventoryStore, compute: ComputeCollaborator) -> None:
        self._store = store
        self._compute = compute

    async def find_available_id(self, range_start: int, range_end: int) -> int:
        """Return the lowest id in ``[range_start, range_end]`` claimed by neither side."""
        if range_start > range_end:
            raise ValidationError(f"Invalid id range: {range_start}-{range_end}")
        if range_start < MIN_STATION_ID or range_end > MAX_STATION_ID:
            raise ValidationError(
                f"Id range must lie within {MIN_STATION_ID}-{MAX_STATION_ID}: "
                f"{range_start}-{range_end}"
            )

        claimed = {record.id for record in self._store.list()}
        for candidate in range(range_start, range_end + 1):
            if candidate in claimed:
                continue
            if await self._compute.exists(candidate):
                continue
            logger.info("Next available station id: %d", candidate)
            return candidate

        raise RangeExhausted(f"No available station id in range {range_start}-{range_end}")
