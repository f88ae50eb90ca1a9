"""Platform installer factory.

Usage::

    from radiostack.platforms import get_installer
    installer = get_installer("azuracast", compute)
"""

from __future__ import annotations

from radiostack.collaborators.base import ComputeCollaborator
from radiostack.errors import ValidationError
from radiostack.models import Platform

from .azuracast import AzuraCastInstaller
from .base import PlatformInstaller
from .libretime import LibreTimeInstaller

__all__ = ["AzuraCastInstaller", "LibreTimeInstaller", "PlatformInstaller", "get_installer"]

_INSTALLERS: dict[Platform, type[PlatformInstaller]] = {
    Platform.AZURACAST: AzuraCastInstaller,
    Platform.LIBRETIME: LibreTimeInstaller,
}

_DEFAULT_INSTALL_PATHS = {
    Platform.AZURACAST: "/var/azuracast",
    Platform.LIBRETIME: "/opt/libretime",
}


def get_installer(
    platform: Platform | str,
    compute: ComputeCollaborator,
    install_path: str | None = None,
) -> PlatformInstaller:
    """Return the installer for *platform*, resolved once per operation."""
    platform = Platform.parse(platform)
    cls = _INSTALLERS.get(platform)
    if cls is None:
        raise ValidationError(f"{platform.value} deployment is not yet implemented")
    return cls(compute, install_path or _DEFAULT_INSTALL_PATHS[platform])
