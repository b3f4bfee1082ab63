"""Native toolchain discovery, invocation and symbol inspection."""

from .invoker import DEFAULT_TIMEOUT, CompiledArtifact, ToolchainInvoker
from .locator import ToolchainDescriptor, ToolchainLocator
from .symbols import exported_operation_symbols, parse_javap_output, parse_nm_output

__all__ = [
    "CompiledArtifact",
    "DEFAULT_TIMEOUT",
    "ToolchainDescriptor",
    "ToolchainInvoker",
    "ToolchainLocator",
    "exported_operation_symbols",
    "parse_javap_output",
    "parse_nm_output",
]
