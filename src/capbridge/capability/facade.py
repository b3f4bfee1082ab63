"""Uniform async facade over a capability's bound backends.

Every operation returns an awaitable. An invocation moves through
INVOKED -> PENDING -> COMPLETED or FAILED. A caller that stops waiting gets
OperationCancelledByCaller; the underlying call is never interrupted and its
late result is discarded.

Example usage:
    clipboard = Capability(table, TargetPlatform.APPLE_DESKTOP)
    text = await clipboard.invoke("getText", timeout=2.0)
"""

import asyncio
import functools
import inspect
import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..config.target import BuildContext, TargetPlatform
from .backend import Backend
from .definition import CapabilityOperation
from .errors import CapabilityError, OperationCancelledByCaller, PlatformError
from .registry import BindingTable


class OperationState(Enum):
    INVOKED = "invoked"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.COMPLETED, OperationState.FAILED)


class Invocation:
    """One in-flight operation call."""

    def __init__(self, capability: str, operation: str, args: Tuple[Any, ...]):
        self.capability = capability
        self.operation = operation
        self.args = args
        self.state = OperationState.INVOKED
        self.value: Any = None
        self.error: Optional[CapabilityError] = None
        self._task: Optional["asyncio.Future[Any]"] = None

    def _pending(self) -> None:
        self.state = OperationState.PENDING

    def _complete(self, value: Any) -> None:
        self.value = value
        self.state = OperationState.COMPLETED

    def _fail(self, error: CapabilityError) -> None:
        self.error = error
        self.state = OperationState.FAILED

    def done(self) -> bool:
        return self.state.is_terminal

    async def result(self, timeout: Optional[float] = None) -> Any:
        """Wait for the operation's value.

        Args:
            timeout: Seconds to wait before giving up, or None to wait forever

        Raises:
            OperationCancelledByCaller: If the wait timed out or was abandoned
            CapabilityError: The operation's own typed error
        """
        try:
            return await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            raise OperationCancelledByCaller(
                f"{self.capability}.{self.operation} gave up after {timeout}s",
                capability=self.capability,
                operation=self.operation,
            ) from None

    def __repr__(self) -> str:
        return f"<Invocation {self.capability}.{self.operation} {self.state.value}>"


def _discard_late_result(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


class Capability:
    """A capability resolved for one platform.

    Non-reentrant operations are serialized: a second call waits until the
    first finishes. Errors that are not already CapabilityError are reported
    as PlatformError.
    """

    def __init__(self, table: BindingTable, platform: TargetPlatform):
        self.definition = table.definition
        self.platform = platform
        self._backends: Dict[str, Backend] = {
            op: table.backend_for(op, platform) for op in self.definition.operation_names
        }
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def for_context(cls, table: BindingTable, context: BuildContext) -> "Capability":
        return cls(table, context.platform)

    @property
    def name(self) -> str:
        return self.definition.name

    def backend(self, operation: str) -> Backend:
        self.definition.operation(operation)
        return self._backends[operation]

    def start(self, operation: str, *args: Any) -> Invocation:
        """Schedule an operation on the running loop and return its invocation."""
        op = self.definition.operation(operation)
        invocation = Invocation(self.name, op.name, args)
        task = asyncio.ensure_future(self._run(op, invocation))
        task.add_done_callback(_discard_late_result)
        invocation._task = task
        return invocation

    async def invoke(self, operation: str, *args: Any, timeout: Optional[float] = None) -> Any:
        return await self.start(operation, *args).result(timeout)

    def _lock(self, operation: str) -> asyncio.Lock:
        if operation not in self._locks:
            self._locks[operation] = asyncio.Lock()
        return self._locks[operation]

    async def _run(self, op: CapabilityOperation, invocation: Invocation) -> Any:
        backend = self._backends[op.name]
        if backend.is_reentrant(op):
            return await self._call(backend, op, invocation)
        async with self._lock(op.name):
            return await self._call(backend, op, invocation)

    async def _call(self, backend: Backend, op: CapabilityOperation, invocation: Invocation) -> Any:
        handler = backend.handler(op)
        invocation._pending()
        try:
            if inspect.iscoroutinefunction(handler):
                value = await handler(*invocation.args)
            else:
                loop = asyncio.get_running_loop()
                value = await loop.run_in_executor(None, functools.partial(handler, *invocation.args))
        except CapabilityError as e:
            if e.capability is None:
                e.capability = self.name
            if e.operation is None:
                e.operation = op.name
            invocation._fail(e)
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logging.debug(f"{self.name}.{op.name} failed in {backend!r}: {e!r}")
            error = PlatformError(str(e) or type(e).__name__, capability=self.name, operation=op.name)
            invocation._fail(error)
            raise error from e
        invocation._complete(value)
        return value
