"""Target platform resolution.

This module turns the build environment into a single immutable BuildContext.
It is the only place in capbridge that reads the process environment; every
other component receives the context explicitly.

Inputs (first match wins):
    - CAPBRIDGE_TARGET: a target triple (e.g. aarch64-apple-ios)
    - CAPBRIDGE_TARGET_OS / CAPBRIDGE_TARGET_ARCH
    - the host system and machine reported by the platform module

Unrecognised environments resolve to TargetPlatform.UNKNOWN; resolution
never raises.
"""

import os
import platform
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


class TargetPlatform(Enum):
    """Platform families a capability backend can be bound to."""

    APPLE_DESKTOP = "apple-desktop"
    APPLE_MOBILE = "apple-mobile"
    ANDROID = "android"
    WINDOWS = "windows"
    LINUX = "linux"
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, value: str) -> "TargetPlatform":
        """Convert string to TargetPlatform, defaulting to UNKNOWN if invalid."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_apple(self) -> bool:
        return self in (TargetPlatform.APPLE_DESKTOP, TargetPlatform.APPLE_MOBILE)

    @property
    def requires_bridge(self) -> bool:
        """Whether capabilities on this platform call through generated glue."""
        return self.is_apple or self is TargetPlatform.ANDROID

    @property
    def family(self) -> str:
        """Config key prefix shared by related platforms (apple, android, ...)."""
        if self.is_apple:
            return "apple"
        return self.value


# Environment variables captured in the BuildContext snapshot
ENV_KEYS: Tuple[str, ...] = (
    "CAPBRIDGE_TARGET",
    "CAPBRIDGE_TARGET_OS",
    "CAPBRIDGE_TARGET_ARCH",
    "CAPBRIDGE_SWIFTC",
    "CAPBRIDGE_KOTLINC",
    "CAPBRIDGE_ANDROID_API",
    "CAPBRIDGE_BUILD_DIR",
    "PATH",
    "SDKROOT",
    "DEVELOPER_DIR",
    "ANDROID_HOME",
    "ANDROID_SDK_ROOT",
    "JAVA_HOME",
    "KOTLIN_HOME",
)

_OS_ALIASES = {
    "macos": TargetPlatform.APPLE_DESKTOP,
    "macosx": TargetPlatform.APPLE_DESKTOP,
    "darwin": TargetPlatform.APPLE_DESKTOP,
    "ios": TargetPlatform.APPLE_MOBILE,
    "iphoneos": TargetPlatform.APPLE_MOBILE,
    "android": TargetPlatform.ANDROID,
    "windows": TargetPlatform.WINDOWS,
    "win32": TargetPlatform.WINDOWS,
    "linux": TargetPlatform.LINUX,
}

# Triple fragments checked in order; android before linux ("linux-android")
_TRIPLE_MARKERS = (
    ("apple-ios", TargetPlatform.APPLE_MOBILE),
    ("apple-darwin", TargetPlatform.APPLE_DESKTOP),
    ("apple-macos", TargetPlatform.APPLE_DESKTOP),
    ("android", TargetPlatform.ANDROID),
    ("windows", TargetPlatform.WINDOWS),
    ("linux", TargetPlatform.LINUX),
)

_TRIPLE_TEMPLATES = {
    TargetPlatform.APPLE_DESKTOP: "{arch}-apple-darwin",
    TargetPlatform.APPLE_MOBILE: "{arch}-apple-ios",
    TargetPlatform.ANDROID: "{arch}-linux-android",
    TargetPlatform.WINDOWS: "{arch}-pc-windows-msvc",
    TargetPlatform.LINUX: "{arch}-unknown-linux-gnu",
    TargetPlatform.UNKNOWN: "{arch}-unknown-unknown",
}


def normalize_arch(machine: str) -> str:
    """Normalize an architecture identifier.

    Args:
        machine: Raw machine string (e.g. 'AMD64', 'arm64', 'armv7l')

    Returns:
        One of 'x86_64', 'i686', 'aarch64', 'armv7', or the lowercased input
    """
    machine = machine.strip().lower()
    if machine in ("x86_64", "amd64", "x64"):
        return "x86_64"
    if machine in ("i386", "i686", "x86"):
        return "i686"
    if machine in ("aarch64", "arm64"):
        return "aarch64"
    if machine.startswith("arm"):
        return "armv7"
    return machine or "unknown"


@dataclass(frozen=True)
class BuildContext:
    """Immutable snapshot of everything a build needs to know about its target."""

    platform: TargetPlatform
    os_name: str
    arch: str
    triple: str
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def get_env(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Look up a captured environment variable (empty values count as unset)."""
        value = self.env.get(key)
        return value if value else default

    def to_dict(self) -> dict:
        return {
            "platform": self.platform.value,
            "os": self.os_name,
            "arch": self.arch,
            "triple": self.triple,
        }


class TargetResolver:
    """Resolves the target platform from a build environment."""

    @staticmethod
    def _platform_from_triple(triple: str) -> TargetPlatform:
        triple = triple.lower()
        for marker, target in _TRIPLE_MARKERS:
            if marker in triple:
                return target
        return TargetPlatform.UNKNOWN

    @staticmethod
    def _identify(environ: Mapping[str, str]) -> Tuple[TargetPlatform, str, str, Optional[str]]:
        """Return (platform, os_name, arch, explicit_triple) for an environment."""
        triple = environ.get("CAPBRIDGE_TARGET", "").strip()
        if triple:
            arch = normalize_arch(triple.split("-", 1)[0])
            target = TargetResolver._platform_from_triple(triple)
            os_name = triple.split("-")[2] if triple.count("-") >= 2 else "unknown"
            return target, os_name, arch, triple

        os_name = environ.get("CAPBRIDGE_TARGET_OS", "").strip().lower()
        if not os_name:
            os_name = platform.system().lower()
        arch = environ.get("CAPBRIDGE_TARGET_ARCH", "").strip()
        if not arch:
            arch = platform.machine()

        target = _OS_ALIASES.get(os_name, TargetPlatform.UNKNOWN)
        return target, os_name or "unknown", normalize_arch(arch), None

    @staticmethod
    def resolve(environ: Optional[Mapping[str, str]] = None) -> TargetPlatform:
        """Resolve the target platform.

        Args:
            environ: Environment mapping (defaults to the process environment)

        Returns:
            The TargetPlatform; UNKNOWN for anything unrecognised
        """
        if environ is None:
            environ = os.environ
        return TargetResolver._identify(environ)[0]

    @staticmethod
    def build_context(environ: Optional[Mapping[str, str]] = None) -> BuildContext:
        """Construct the immutable BuildContext for this build invocation.

        Args:
            environ: Environment mapping (defaults to the process environment)

        Returns:
            BuildContext with platform, arch, triple and an env snapshot
        """
        if environ is None:
            environ = os.environ

        target, os_name, arch, triple = TargetResolver._identify(environ)
        if triple is None:
            triple = _TRIPLE_TEMPLATES[target].format(arch=arch)

        snapshot = {key: environ[key] for key in ENV_KEYS if key in environ}
        return BuildContext(
            platform=target,
            os_name=os_name,
            arch=arch,
            triple=triple,
            env=MappingProxyType(snapshot),
        )


def resolve(environ: Optional[Mapping[str, str]] = None) -> TargetPlatform:
    """Module-level shortcut for TargetResolver.resolve()."""
    return TargetResolver.resolve(environ)
