"""Error taxonomy for RadioStack.

Every error carries a stable ``kind`` string so that outcome reports (CLI,
admin API, bulk runs) can classify failures without isinstance chains.
"""

from __future__ import annotations


class RadioStackError(Exception):
    """Base error for all RadioStack operations."""

    kind = "error"


class ValidationError(RadioStackError):
    """Malformed identifier, address or missing field. No side effects taken."""

    kind = "validation"


class ConflictError(RadioStackError):
    """Identifier, hostname or address already claimed."""

    kind = "conflict"


class ResourceError(RadioStackError):
    """Storage pool unhealthy, out of capacity, or no free identifiers."""

    kind = "resource"


class RangeExhausted(ResourceError):
    """Every identifier in the requested range is claimed."""

    kind = "range_exhausted"


class ExternalToolError(RadioStackError):
    """A collaborator command returned failure.

    The side effects of the failed call may be partially applied.
    """

    kind = "external_tool"

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class NotFoundError(RadioStackError):
    """Station, volume or snapshot does not exist."""

    kind = "not_found"


class ConfirmationDeclined(RadioStackError):
    """Operator declined a destructive prompt. Not a fault."""

    kind = "declined"


class StoreIOError(RadioStackError):
    """Inventory file unreadable, unwritable, or has a corrupt header."""

    kind = "store_io"


def error_kind(exc: BaseException) -> str:
    """Return the outcome ``kind`` for *exc* (``"internal"`` for foreign errors)."""
    if isinstance(exc, RadioStackError):
        return exc.kind
    return "internal"
