"""Host collaborators: containers (Proxmox) and volumes (ZFS)."""

from radiostack.collaborators.base import ComputeCollaborator, StorageCollaborator
from radiostack.collaborators.proxmox import ProxmoxCompute
from radiostack.collaborators.zfs import ZfsStorage, parse_size

__all__ = [
    "ComputeCollaborator",
    "ProxmoxCompute",
    "StorageCollaborator",
    "ZfsStorage",
    "parse_size",
]
