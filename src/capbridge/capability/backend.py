"""Capability backends.

A backend implements a capability's operations for one platform. Operations
map to methods by name (``getText`` -> ``get_text``). Coroutine methods run on
the event loop; plain methods are treated as blocking and run on an executor
thread.
"""

import logging
from typing import Any, Callable, FrozenSet, List, Optional

from ..config.target import TargetPlatform
from .definition import CapabilityDefinition, CapabilityOperation


class Backend:
    """Base class for platform backends."""

    name = "backend"
    reentrant_operations: FrozenSet[str] = frozenset()

    def is_available(self, platform: TargetPlatform) -> bool:
        """Whether this backend can serve the platform at bind time."""
        return True

    def handler(self, operation: CapabilityOperation) -> Optional[Callable[..., Any]]:
        method = getattr(self, operation.method_name, None)
        return method if callable(method) else None

    def missing_operations(self, definition: CapabilityDefinition) -> List[str]:
        return [op.name for op in definition.operations if self.handler(op) is None]

    def is_reentrant(self, operation: CapabilityOperation) -> bool:
        return operation.name in self.reentrant_operations

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


class UnsupportedBackend(Backend):
    """Fallback for every (operation, platform) pair with no real backend.

    Holds no state and touches no native code, so every operation is
    reentrant and completes immediately: probing operations resolve to their
    fallback value, the rest fail with the capability's unavailable error.
    """

    name = "unsupported"

    def __init__(self, definition: CapabilityDefinition):
        self.definition = definition
        self.reentrant_operations = frozenset(definition.operation_names)

    def handler(self, operation: CapabilityOperation) -> Callable[..., Any]:
        definition = self.definition

        async def unsupported(*args: Any) -> Any:
            if operation.has_fallback:
                return operation.fallback
            logging.debug(f"{definition.name}.{operation.name}: no backend for this platform")
            raise definition.unavailable_error(
                capability=definition.name, operation=operation.name
            )

        return unsupported
