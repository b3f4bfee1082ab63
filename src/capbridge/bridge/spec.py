"""BridgeSpec: one module under bridging, resolved for one target platform."""

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from .signature import OperationSignature


@dataclass(frozen=True)
class BridgeSpec:
    """A module whose declared operations must exist on both sides of a bridge.

    Attributes:
        name: Module name (the ``[module:<name>]`` section)
        module_path: Dotted host module path the bridge belongs to
        lib_name: Native library / Swift module name (e.g. ClipboardHelper)
        root: Project directory relative source paths are resolved against
        native_sources: Hand-written native sources for the target platform
        frameworks: Frameworks to link (Apple targets)
        libraries: Additional native libraries to link
        operations: Declared operation signatures
        required_operations: Signatures the bound capability requires; declared
            operations of the same name must match their types
    """

    name: str
    module_path: str
    lib_name: str
    root: Path
    native_sources: Tuple[Path, ...] = ()
    frameworks: Tuple[str, ...] = ()
    libraries: Tuple[str, ...] = ()
    operations: Tuple[OperationSignature, ...] = ()
    required_operations: Tuple[OperationSignature, ...] = ()

    @property
    def operation_names(self) -> Tuple[str, ...]:
        return tuple(op.name for op in self.operations)

    def resolved_sources(self) -> Tuple[Path, ...]:
        """Native sources as absolute paths."""
        return tuple(
            source if source.is_absolute() else self.root / source
            for source in self.native_sources
        )
