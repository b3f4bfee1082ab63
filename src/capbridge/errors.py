"""Build-time error taxonomy for capbridge.

Every fatal build error derives from BuildError and carries enough context
(module, platform, file) for the CLI to print an actionable diagnostic.
Runtime capability errors live in capbridge.capability.errors.
"""

from pathlib import Path
from typing import Optional


class BuildError(Exception):
    """Base class for errors that abort a build."""

    kind = "BuildError"

    def __init__(
        self,
        message: str,
        module: Optional[str] = None,
        platform: Optional[str] = None,
        path: Optional[Path] = None,
    ):
        super().__init__(message)
        self.message = message
        self.module = module
        self.platform = platform
        self.path = path

    def context_lines(self) -> list:
        """Return 'key: value' lines describing where the error happened."""
        lines = []
        if self.module:
            lines.append(f"module: {self.module}")
        if self.platform:
            lines.append(f"platform: {self.platform}")
        if self.path:
            lines.append(f"file: {self.path}")
        return lines

    def __str__(self) -> str:
        return self.message


class ProjectConfigError(BuildError):
    """Raised when capbridge.ini is missing or malformed."""

    kind = "ProjectConfigError"


class ToolchainNotFound(BuildError):
    """Raised when the native toolchain for the target cannot be resolved."""

    kind = "ToolchainNotFound"


class BridgeGenerationFailed(BuildError):
    """Raised when bridge glue cannot be generated for an operation."""

    kind = "BridgeGenerationFailed"

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation

    def context_lines(self) -> list:
        lines = super().context_lines()
        if self.operation:
            lines.append(f"operation: {self.operation}")
        return lines


class CompilationFailed(BuildError):
    """Raised when a native compiler step exits unsuccessfully.

    ``diagnostic`` holds the compiler's own output, untouched.
    """

    kind = "CompilationFailed"

    def __init__(self, message: str, diagnostic: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.diagnostic = diagnostic

    def __str__(self) -> str:
        if self.diagnostic:
            return f"{self.message}\n{self.diagnostic}"
        return self.message


class LinkFailed(BuildError):
    """Raised when a declared operation symbol is missing from every artifact."""

    kind = "LinkFailed"

    def __init__(self, message: str, symbol: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.symbol = symbol

    def context_lines(self) -> list:
        lines = super().context_lines()
        if self.symbol:
            lines.append(f"symbol: {self.symbol}")
        return lines
