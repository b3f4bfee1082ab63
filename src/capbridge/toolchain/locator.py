"""Native toolchain discovery.

This module locates the compiler, SDK and auxiliary tools for a BuildContext
and returns a ToolchainDescriptor. All lookups go through the context's
environment snapshot; nothing here reads os.environ.

Apple targets:
    - swiftc from CAPBRIDGE_SWIFTC, ``xcrun --find swiftc`` or PATH
    - SDK from SDKROOT or ``xcrun --sdk <sdk> --show-sdk-path``
    - ar and nm from PATH

Android targets:
    - SDK from ANDROID_HOME or ANDROID_SDK_ROOT
    - platforms/android-<N>/android.jar (highest N, or CAPBRIDGE_ANDROID_API)
    - build-tools/<version>/lib/d8.jar (highest version)
    - kotlinc from CAPBRIDGE_KOTLINC, KOTLIN_HOME/bin or PATH
    - java and javap from JAVA_HOME/bin or PATH
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..config.target import BuildContext, TargetPlatform
from ..errors import ToolchainNotFound

IOS_DEPLOYMENT_TARGET = "14.0"
MACOS_DEPLOYMENT_TARGET = "12.3"

_APPLE_SDKS = {
    TargetPlatform.APPLE_DESKTOP: "macosx",
    TargetPlatform.APPLE_MOBILE: "iphoneos",
}

_EXECUTABLE_SUFFIXES = ("", ".exe", ".bat", ".cmd")

# Tool roles that are run directly; d8 and android_jar are jars passed to java
EXECUTABLE_TOOLS = frozenset({"ar", "nm", "java", "javap"})


@dataclass(frozen=True)
class ToolchainDescriptor:
    """Everything the invoker needs to compile for one target.

    Attributes:
        platform: Target platform
        compiler: swiftc or kotlinc
        tools: Auxiliary tools by role (ar, nm, java, javap, d8, android_jar)
        sdk_root: Apple SDK path or Android SDK root
        target: Compiler target (e.g. arm64-apple-ios14.0)
        output_dir: Where artifacts for this build are written
        runtime_search_paths: Library search paths the host link needs
    """

    platform: TargetPlatform
    compiler: Path
    tools: Dict[str, Path] = field(default_factory=dict)
    sdk_root: Optional[Path] = None
    target: str = ""
    output_dir: Path = Path(".")
    runtime_search_paths: Tuple[Path, ...] = ()

    def tool(self, role: str) -> Path:
        """Path of an auxiliary tool.

        Raises:
            ToolchainNotFound: If the descriptor has no tool for that role
        """
        try:
            return self.tools[role]
        except KeyError:
            raise ToolchainNotFound(
                f"Toolchain for {self.platform.value} has no '{role}' tool",
                platform=self.platform.value,
            ) from None

    def verify(self) -> None:
        """Check every located path exists and every program can be executed.

        Raises:
            ToolchainNotFound: Naming the first missing or non-executable path
        """
        paths = [("compiler", self.compiler)] + sorted(self.tools.items())
        if self.sdk_root is not None:
            paths.append(("sdk", self.sdk_root))
        for role, path in paths:
            if not path.exists():
                raise ToolchainNotFound(
                    f"{role} not found at {path}",
                    platform=self.platform.value,
                    path=path,
                )
            if (role == "compiler" or role in EXECUTABLE_TOOLS) and not os.access(path, os.X_OK):
                raise ToolchainNotFound(
                    f"{role} at {path} is not executable",
                    platform=self.platform.value,
                    path=path,
                )

    def to_dict(self) -> dict:
        return {
            "platform": self.platform.value,
            "compiler": str(self.compiler),
            "tools": {role: str(path) for role, path in sorted(self.tools.items())},
            "sdk_root": str(self.sdk_root) if self.sdk_root else None,
            "target": self.target,
            "output_dir": str(self.output_dir),
            "runtime_search_paths": [str(p) for p in self.runtime_search_paths],
        }


def _version_key(name: str) -> Optional[Tuple[int, ...]]:
    try:
        return tuple(int(part) for part in name.split("."))
    except ValueError:
        return None


class ToolchainLocator:
    """Locates the native toolchain for a build context.

    Example usage:
        context = TargetResolver.build_context()
        descriptor = ToolchainLocator(context).locate(Path(".capbridge/build"))
    """

    def __init__(self, context: BuildContext, timeout: int = 30):
        """
        Args:
            context: Resolved build context
            timeout: Seconds to wait for each xcrun query
        """
        self.context = context
        self.timeout = timeout

    def locate(self, output_dir: Path) -> ToolchainDescriptor:
        """Locate and verify the toolchain.

        Args:
            output_dir: Build output directory recorded in the descriptor

        Returns:
            A verified ToolchainDescriptor

        Raises:
            ToolchainNotFound: If any required tool or SDK is missing
        """
        platform = self.context.platform
        if platform.is_apple:
            descriptor = self._locate_apple(output_dir)
        elif platform is TargetPlatform.ANDROID:
            descriptor = self._locate_android(output_dir)
        else:
            raise ToolchainNotFound(
                f"No bridge toolchain exists for {platform.value}",
                platform=platform.value,
            )
        descriptor.verify()
        logging.info(f"Located {platform.value} toolchain: {descriptor.compiler}")
        return descriptor

    def _missing(self, what: str, hint: str) -> ToolchainNotFound:
        return ToolchainNotFound(
            f"{what} not found for {self.context.platform.value}. {hint}",
            platform=self.context.platform.value,
        )

    def _which(self, name: str) -> Optional[Path]:
        found = shutil.which(name, path=self.context.get_env("PATH"))
        return Path(found) if found else None

    @staticmethod
    def _in_dir(directory: Path, name: str) -> Optional[Path]:
        for suffix in _EXECUTABLE_SUFFIXES:
            candidate = directory / f"{name}{suffix}"
            if candidate.exists():
                return candidate
        return None

    def _xcrun(self, *args: str) -> Optional[str]:
        """Run an xcrun query; None when xcrun is absent or fails."""
        xcrun = self._which("xcrun")
        if xcrun is None:
            return None
        env = dict(self.context.env)
        try:
            result = subprocess.run(
                [str(xcrun), *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env or None,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logging.debug(f"xcrun {' '.join(args)} failed: {e}")
            return None
        if result.returncode != 0:
            logging.debug(f"xcrun {' '.join(args)} exited {result.returncode}: {result.stderr.strip()}")
            return None
        return result.stdout.strip() or None

    def _locate_apple(self, output_dir: Path) -> ToolchainDescriptor:
        platform = self.context.platform
        sdk_name = _APPLE_SDKS[platform]

        swiftc: Optional[Path] = None
        override = self.context.get_env("CAPBRIDGE_SWIFTC")
        if override:
            swiftc = Path(override)
        else:
            found = self._xcrun("--find", "swiftc")
            swiftc = Path(found) if found else self._which("swiftc")
        if swiftc is None:
            raise self._missing("swiftc", "Install Xcode or set CAPBRIDGE_SWIFTC.")

        sdk = self.context.get_env("SDKROOT") or self._xcrun("--sdk", sdk_name, "--show-sdk-path")
        if not sdk:
            raise self._missing(f"{sdk_name} SDK", "Install Xcode or set SDKROOT.")

        tools = {}
        for tool in ("ar", "nm"):
            path = self._which(tool)
            if path is None:
                raise self._missing(tool, "Install the Xcode command line tools.")
            tools[tool] = path

        if platform is TargetPlatform.APPLE_MOBILE:
            target = f"arm64-apple-ios{IOS_DEPLOYMENT_TARGET}"
        elif self.context.arch == "x86_64":
            target = f"x86_64-apple-macos{MACOS_DEPLOYMENT_TARGET}"
        else:
            target = f"arm64-apple-macos{MACOS_DEPLOYMENT_TARGET}"

        # <toolchain>/usr/bin/swiftc -> <toolchain>/usr/lib/swift/<sdk>
        runtime = swiftc.resolve().parent.parent / "lib" / "swift" / sdk_name

        return ToolchainDescriptor(
            platform=platform,
            compiler=swiftc,
            tools=tools,
            sdk_root=Path(sdk),
            target=target,
            output_dir=output_dir,
            runtime_search_paths=(runtime,),
        )

    def _android_sdk(self) -> Path:
        sdk = self.context.get_env("ANDROID_HOME") or self.context.get_env("ANDROID_SDK_ROOT")
        if not sdk:
            raise self._missing("Android SDK", "Set ANDROID_HOME or ANDROID_SDK_ROOT.")
        return Path(sdk)

    def _android_jar(self, sdk: Path) -> Path:
        api = self.context.get_env("CAPBRIDGE_ANDROID_API")
        if api:
            return sdk / "platforms" / f"android-{api}" / "android.jar"

        best: Optional[Tuple[int, Path]] = None
        platforms_dir = sdk / "platforms"
        if platforms_dir.is_dir():
            for entry in platforms_dir.iterdir():
                level = entry.name[len("android-"):] if entry.name.startswith("android-") else ""
                jar = entry / "android.jar"
                if level.isdigit() and jar.exists() and (best is None or int(level) > best[0]):
                    best = (int(level), jar)
        if best is None:
            raise self._missing("android.jar", f"Install an SDK platform under {platforms_dir}.")
        return best[1]

    def _d8_jar(self, sdk: Path) -> Path:
        best: Optional[Tuple[Tuple[int, ...], Path]] = None
        build_tools = sdk / "build-tools"
        if build_tools.is_dir():
            for entry in build_tools.iterdir():
                version = _version_key(entry.name)
                jar = entry / "lib" / "d8.jar"
                if version is not None and jar.exists() and (best is None or version > best[0]):
                    best = (version, jar)
        if best is None:
            raise self._missing("d8.jar", f"Install Android build-tools under {build_tools}.")
        return best[1]

    def _java_tool(self, name: str) -> Path:
        java_home = self.context.get_env("JAVA_HOME")
        if java_home:
            found = self._in_dir(Path(java_home) / "bin", name)
            if found:
                return found
        found = self._which(name)
        if found is None:
            raise self._missing(name, "Install a JDK or set JAVA_HOME.")
        return found

    def _locate_android(self, output_dir: Path) -> ToolchainDescriptor:
        sdk = self._android_sdk()
        android_jar = self._android_jar(sdk)
        d8 = self._d8_jar(sdk)

        kotlinc: Optional[Path] = None
        override = self.context.get_env("CAPBRIDGE_KOTLINC")
        kotlin_home = self.context.get_env("KOTLIN_HOME")
        if override:
            kotlinc = Path(override)
        elif kotlin_home:
            kotlinc = self._in_dir(Path(kotlin_home) / "bin", "kotlinc")
        if kotlinc is None:
            kotlinc = self._which("kotlinc")
        if kotlinc is None:
            raise self._missing("kotlinc", "Install Kotlin or set CAPBRIDGE_KOTLINC.")

        return ToolchainDescriptor(
            platform=TargetPlatform.ANDROID,
            compiler=kotlinc,
            tools={
                "java": self._java_tool("java"),
                "javap": self._java_tool("javap"),
                "d8": d8,
                "android_jar": android_jar,
            },
            sdk_root=sdk,
            target=self.context.triple,
            output_dir=output_dir,
            runtime_search_paths=(),
        )
