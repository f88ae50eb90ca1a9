"""RadioStack: provision and manage radio station containers on Proxmox."""

__version__ = "1.0.0"
