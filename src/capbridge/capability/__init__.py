"""Capability facade: definitions, backend bindings and async dispatch."""

from .backend import Backend, UnsupportedBackend
from .bridged import BridgedBackend
from .catalog import CATALOG, get_definition
from .definition import NO_FALLBACK, CapabilityDefinition, CapabilityOperation
from .errors import (
    BindingError,
    CapabilityError,
    CapabilityNotAvailable,
    CapabilityNotSupported,
    OperationCancelledByCaller,
    PlatformError,
)
from .facade import Capability, Invocation, OperationState
from .registry import UNSUPPORTED, BackendBinding, BackendRegistry, BindingTable

__all__ = [
    "Backend",
    "BackendBinding",
    "BackendRegistry",
    "BindingError",
    "BindingTable",
    "BridgedBackend",
    "CATALOG",
    "Capability",
    "CapabilityDefinition",
    "CapabilityError",
    "CapabilityNotAvailable",
    "CapabilityNotSupported",
    "CapabilityOperation",
    "Invocation",
    "NO_FALLBACK",
    "OperationCancelledByCaller",
    "OperationState",
    "PlatformError",
    "UNSUPPORTED",
    "UnsupportedBackend",
    "get_definition",
]
