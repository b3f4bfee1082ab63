"""Capability and operation definitions.

A capability is a fixed, versioned set of operations. Each operation carries
its bridge signature so the same definition drives both the generated glue and
the runtime facade.
"""

import re
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Tuple, Type

from ..bridge.signature import OperationSignature
from .errors import (
    CapabilityError,
    CapabilityNotAvailable,
    CapabilityNotSupported,
    OperationCancelledByCaller,
    PlatformError,
)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class _NoFallback:
    def __repr__(self) -> str:
        return "NO_FALLBACK"


NO_FALLBACK = _NoFallback()

DEFAULT_ERRORS: FrozenSet[Type[CapabilityError]] = frozenset({
    CapabilityNotAvailable,
    CapabilityNotSupported,
    OperationCancelledByCaller,
    PlatformError,
})


def snake_case(name: str) -> str:
    """getText -> get_text"""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass(frozen=True)
class CapabilityOperation:
    """A named async operation with its signature and possible errors.

    ``fallback`` is the value the unsupported backend resolves to. Probing
    operations (``isAvailable``) fall back to a value; everything else leaves
    it unset and fails with the capability's unavailable error.
    """

    declaration: str
    errors: FrozenSet[Type[CapabilityError]] = DEFAULT_ERRORS
    fallback: Any = NO_FALLBACK
    signature: OperationSignature = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "signature", OperationSignature.parse(self.declaration))

    @property
    def name(self) -> str:
        return self.signature.name

    @property
    def method_name(self) -> str:
        """Backend method implementing this operation."""
        return snake_case(self.name)

    @property
    def has_fallback(self) -> bool:
        return self.fallback is not NO_FALLBACK


@dataclass(frozen=True)
class CapabilityDefinition:
    """A capability's fixed operation set."""

    name: str
    version: int
    operations: Tuple[CapabilityOperation, ...]
    unavailable_error: Type[CapabilityError] = CapabilityNotSupported

    def __post_init__(self):
        names = [op.name for op in self.operations]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(
                f"Capability '{self.name}' declares {', '.join(duplicates)} more than once"
            )

    @property
    def operation_names(self) -> Tuple[str, ...]:
        return tuple(op.name for op in self.operations)

    @property
    def signatures(self) -> Tuple[OperationSignature, ...]:
        return tuple(op.signature for op in self.operations)

    def operation(self, name: str) -> CapabilityOperation:
        """Look up an operation by name.

        Raises:
            CapabilityNotSupported: If the capability has no such operation
        """
        for op in self.operations:
            if op.name == name:
                return op
        raise CapabilityNotSupported(
            f"{self.name} v{self.version} has no operation '{name}'",
            capability=self.name,
            operation=name,
        )
