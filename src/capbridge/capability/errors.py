"""Runtime error family shared by every capability backend.

These are recoverable: they reach the awaiting caller as typed exceptions and
never terminate the process. BindingError is the configuration-time error
raised while building a binding table.
"""

from typing import Optional


def _default_message(cls: type) -> str:
    doc = (cls.__doc__ or "").strip()
    return doc.splitlines()[0].rstrip(".") if doc else cls.__name__


class CapabilityError(Exception):
    """Base class for typed capability results."""

    def __init__(self, message: str = "", capability: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message or _default_message(type(self)))
        self.capability = capability
        self.operation = operation


class CapabilityNotAvailable(CapabilityError):
    """The capability is not available on this device."""


class CapabilityNotSupported(CapabilityError):
    """The capability is not supported on this platform."""


class OperationCancelledByCaller(CapabilityError):
    """The caller stopped waiting for the operation."""


class PlatformError(CapabilityError):
    """The platform backend reported an error."""

    def __init__(self, detail: str, **kwargs):
        super().__init__(f"Platform error: {detail}", **kwargs)
        self.detail = detail


class BindingError(Exception):
    """Raised when backend bindings violate the exactly-one rule."""

    pass
