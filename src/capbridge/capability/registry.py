"""Binding table construction.

Backends are registered per platform, then ``bind()`` produces an immutable
table holding exactly one binding for every (operation, platform) pair. Pairs
with no available backend are bound to the unsupported fallback.

Example usage:
    registry = BackendRegistry(CLIPBOARD)
    registry.register(TargetPlatform.APPLE_DESKTOP, MacClipboard())
    table = registry.bind()
    table.resolve("getText", TargetPlatform.LINUX)  # -> unsupported binding
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Tuple, Union

from ..config.target import TargetPlatform
from .backend import Backend, UnsupportedBackend
from .definition import CapabilityDefinition
from .errors import BindingError


class _Unsupported:
    def __repr__(self) -> str:
        return "UNSUPPORTED"


UNSUPPORTED = _Unsupported()

BindingKey = Tuple[str, TargetPlatform]


@dataclass(frozen=True)
class BackendBinding:
    operation: str
    platform: TargetPlatform
    backend: Union[Backend, _Unsupported]

    @property
    def is_unsupported(self) -> bool:
        return self.backend is UNSUPPORTED


class BindingTable(Mapping):
    """Immutable (operation, platform) -> BackendBinding map."""

    def __init__(self, definition: CapabilityDefinition, bindings: Dict[BindingKey, BackendBinding]):
        self.definition = definition
        self._bindings = MappingProxyType(dict(bindings))
        self._unsupported = UnsupportedBackend(definition)

    def __getitem__(self, key: BindingKey) -> BackendBinding:
        return self._bindings[key]

    def __iter__(self) -> Iterator[BindingKey]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def resolve(self, operation: str, platform: TargetPlatform) -> BackendBinding:
        """Return the binding for a pair. Total over the definition's operations."""
        self.definition.operation(operation)
        return self._bindings[(operation, platform)]

    def backend_for(self, operation: str, platform: TargetPlatform) -> Backend:
        binding = self.resolve(operation, platform)
        if binding.is_unsupported:
            return self._unsupported
        return binding.backend

    def for_platform(self, platform: TargetPlatform) -> Dict[str, BackendBinding]:
        return {op: self._bindings[(op, platform)] for op in self.definition.operation_names}


class BackendRegistry:
    """Collects backend registrations for one capability."""

    def __init__(self, definition: CapabilityDefinition):
        self.definition = definition
        self._registrations: List[Tuple[TargetPlatform, Backend]] = []

    def register(self, platform: TargetPlatform, backend: Backend) -> "BackendRegistry":
        """Register a backend for a platform.

        Raises:
            BindingError: If the platform is UNKNOWN or already has this backend
        """
        if platform is TargetPlatform.UNKNOWN:
            raise BindingError(
                f"{self.definition.name}: UNKNOWN always binds to the unsupported fallback"
            )
        if any(p is platform and b is backend for p, b in self._registrations):
            raise BindingError(
                f"{self.definition.name}: {backend!r} already registered for {platform.value}"
            )
        self._registrations.append((platform, backend))
        return self

    def bind(self) -> BindingTable:
        """Build the binding table.

        A backend that does not implement every operation is rejected. A
        backend reporting itself unavailable for its platform is skipped and
        the pair falls back to unsupported.

        Raises:
            BindingError: On a partial backend or two backends for one pair
        """
        name = self.definition.name
        candidates: Dict[BindingKey, List[Backend]] = {}

        for platform, backend in self._registrations:
            missing = backend.missing_operations(self.definition)
            if missing:
                raise BindingError(
                    f"{name}: {backend!r} for {platform.value} does not implement "
                    f"{', '.join(missing)}"
                )
            if not backend.is_available(platform):
                logging.info(f"{name}: {backend!r} unavailable on {platform.value}, using fallback")
                continue
            for op in self.definition.operation_names:
                candidates.setdefault((op, platform), []).append(backend)

        bindings: Dict[BindingKey, BackendBinding] = {}
        for op in self.definition.operation_names:
            for platform in TargetPlatform:
                found = candidates.get((op, platform), [])
                if len(found) > 1:
                    raise BindingError(
                        f"{name}.{op}: {len(found)} backends bound for {platform.value}"
                    )
                backend = found[0] if found else UNSUPPORTED
                bindings[(op, platform)] = BackendBinding(op, platform, backend)

        expected = len(self.definition.operations) * len(TargetPlatform)
        if len(bindings) != expected:
            raise BindingError(f"{name}: expected {expected} bindings, built {len(bindings)}")
        return BindingTable(self.definition, bindings)
