"""Backend that forwards operations to a compiled bridge library."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from ..bridge.marshal import NativeBridge
from ..config.target import TargetPlatform
from .backend import Backend
from .definition import CapabilityDefinition, CapabilityOperation
from .errors import BindingError, CapabilityError, PlatformError

# Error strings native code reports when the hardware or service is absent.
UNAVAILABLE_CODES = ("unavailable", "not_available", "not_supported")


class BridgedBackend(Backend):
    """Serves a capability through NativeBridge.

    Synchronous bridge functions block, so the facade runs them on an
    executor thread. Asynchronous ones complete through a native callback
    that hops back onto the event loop.
    """

    name = "bridged"

    def __init__(self, definition: CapabilityDefinition, bridge: NativeBridge):
        self.definition = definition
        self.bridge = bridge
        self.reentrant_operations = frozenset(
            op.name for op in definition.operations if op.signature.reentrant
        )

    @classmethod
    def load(cls, definition: CapabilityDefinition, library: Path, module: str) -> "BridgedBackend":
        """Open a compiled bridge library for a capability."""
        operations = {op.name: op.signature for op in definition.operations}
        return cls(definition, NativeBridge(library, module, operations))

    @classmethod
    def from_artifact(cls, definition: CapabilityDefinition, artifact: Any) -> "BridgedBackend":
        """Open the shared library a build produced for a capability module.

        Raises:
            BindingError: If the artifact has no loadable library (Android DEX)
        """
        if artifact.shared_library is None:
            raise BindingError(
                f"{artifact.module} was built for {artifact.platform.value} without a shared library; "
                "ctypes cannot load it"
            )
        return cls.load(definition, artifact.shared_library, artifact.module)

    def is_available(self, platform: TargetPlatform) -> bool:
        # Android bridges compile to DEX, which ctypes cannot load
        return platform.is_apple

    def handler(self, operation: CapabilityOperation) -> Optional[Callable[..., Any]]:
        if operation.name not in self.bridge.operations:
            return None
        name = operation.name

        if operation.signature.is_async:

            async def call_async(*args: Any) -> Any:
                return await self._complete(name, args)

            return call_async

        def call_sync(*args: Any) -> Any:
            return self.bridge.call(name, *args)

        return call_sync

    def map_error(self, operation: str, error: str) -> CapabilityError:
        """Translate a native error string into the capability error family."""
        if error.strip().lower() in UNAVAILABLE_CODES:
            return self.definition.unavailable_error(
                capability=self.definition.name, operation=operation
            )
        return PlatformError(error, capability=self.definition.name, operation=operation)

    async def _complete(self, name: str, args: tuple) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def resolve(value: Any, error: Optional[str]) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(self.map_error(name, error))
            else:
                future.set_result(value)

        def on_complete(value: Any, error: Optional[str]) -> None:
            try:
                loop.call_soon_threadsafe(resolve, value, error)
            except RuntimeError:
                logging.debug(f"{self.definition.name}.{name} completed after its event loop closed")

        self.bridge.call_async(name, args, on_complete)
        return await future
