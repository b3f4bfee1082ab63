"""Native toolchain invocation.

This module compiles generated glue together with a module's hand-written
native sources and reads back the operation symbols the artifact exports.

Design:
    - Apple: swiftc -emit-object -wmo (generated header as bridging header),
      ar rcs into a static archive, nm -gU for symbols, then swiftc
      -emit-library over the same object for a dylib ctypes can load
    - Android: kotlinc against android.jar, d8 into classes.dex, javap -public
      for symbols
    - Every step runs in a staging directory inside the output directory; the
      finished artifact is moved into place with os.replace
"""

import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional

from ..bridge.generator import GeneratedBridge
from ..bridge.spec import BridgeSpec
from ..config.target import TargetPlatform
from ..errors import CompilationFailed, ToolchainNotFound
from .locator import ToolchainDescriptor
from .symbols import exported_operation_symbols, parse_javap_output, parse_nm_output

DEFAULT_TIMEOUT = 600


@dataclass(frozen=True)
class CompiledArtifact:
    """Output of compiling one BridgeSpec for one platform."""

    module: str
    platform: TargetPlatform
    path: Path
    kind: str
    exported_symbols: FrozenSet[str] = frozenset()
    shared_library: Optional[Path] = None

    def to_dict(self) -> dict:
        return {
            "module": self.module,
            "platform": self.platform.value,
            "path": str(self.path),
            "kind": self.kind,
            "exported_symbols": sorted(self.exported_symbols),
            "shared_library": str(self.shared_library) if self.shared_library else None,
        }


class ToolchainInvoker:
    """Drives the native compiler for one target.

    Example usage:
        invoker = ToolchainInvoker(descriptor)
        artifact = invoker.compile(spec, generated_dir, generated)
    """

    def __init__(
        self,
        descriptor: ToolchainDescriptor,
        show_progress: bool = False,
        timeout: int = DEFAULT_TIMEOUT,
        env: Optional[Mapping[str, str]] = None,
    ):
        """Initialize toolchain invoker.

        Args:
            descriptor: Located toolchain
            show_progress: Whether to print each step
            timeout: Seconds allowed per tool invocation
            env: Environment for child processes (None inherits)
        """
        self.descriptor = descriptor
        self.show_progress = show_progress
        self.timeout = timeout
        self.env = env

    def module_dir(self, spec: BridgeSpec) -> Path:
        """Artifact directory for a module: <output_dir>/<module>."""
        return self.descriptor.output_dir / spec.name

    def compile(self, spec: BridgeSpec, generated_dir: Path, generated: GeneratedBridge) -> CompiledArtifact:
        """Compile a module's generated and hand-written sources.

        Args:
            spec: Module being compiled
            generated_dir: Directory the generated files were written to
            generated: Generated bridge for the descriptor's platform

        Returns:
            CompiledArtifact with its exported operation symbols

        Raises:
            ToolchainNotFound: If the compiler or a tool cannot be executed
            CompilationFailed: If a step fails, times out, or a source is missing
        """
        platform = self.descriptor.platform
        if not os.access(self.descriptor.compiler, os.X_OK):
            raise ToolchainNotFound(
                f"Compiler not found or not executable: {self.descriptor.compiler}",
                module=spec.name,
                platform=platform.value,
                path=self.descriptor.compiler,
            )

        sources = list(spec.resolved_sources())
        for source in sources:
            if not source.exists():
                raise CompilationFailed(
                    f"Native source not found: {source}",
                    module=spec.name,
                    platform=platform.value,
                    path=source,
                )

        output_dir = self.module_dir(spec)
        output_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=output_dir))
        try:
            if platform.is_apple:
                return self._compile_apple(spec, generated_dir, generated, sources, staging)
            if platform is TargetPlatform.ANDROID:
                return self._compile_android(spec, generated_dir, generated, sources, staging)
            raise CompilationFailed(
                f"Nothing to compile for {platform.value}",
                module=spec.name,
                platform=platform.value,
            )
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def _generated_file(self, spec: BridgeSpec, generated_dir: Path, generated: GeneratedBridge, suffix: str) -> Path:
        name = generated.find(suffix)
        if name is None:
            raise CompilationFailed(
                f"Generated bridge has no {suffix} file",
                module=spec.name,
                platform=self.descriptor.platform.value,
                path=generated_dir,
            )
        return generated_dir / name

    def _run(self, step: str, cmd: List[str], spec: BridgeSpec, extra_env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
        platform = self.descriptor.platform.value
        env = None
        if self.env is not None or extra_env:
            env = dict(self.env if self.env is not None else os.environ)
            env.update(extra_env or {})

        if self.show_progress:
            print(f"  [{spec.name}] {step}...")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except OSError as e:
            raise ToolchainNotFound(
                f"{step}: cannot execute {cmd[0]}: {e.strerror or e}",
                module=spec.name,
                platform=platform,
                path=Path(cmd[0]),
            ) from e
        except subprocess.TimeoutExpired as e:
            raise CompilationFailed(
                f"{step} timed out after {self.timeout}s",
                module=spec.name,
                platform=platform,
            ) from e

        if result.returncode != 0:
            raise CompilationFailed(
                f"{step} failed with exit code {result.returncode}",
                diagnostic=result.stderr if result.stderr.strip() else result.stdout,
                module=spec.name,
                platform=platform,
            )
        return result

    def _compile_apple(
        self,
        spec: BridgeSpec,
        generated_dir: Path,
        generated: GeneratedBridge,
        sources: List[Path],
        staging: Path,
    ) -> CompiledArtifact:
        descriptor = self.descriptor
        header = self._generated_file(spec, generated_dir, generated, ".h")
        glue = self._generated_file(spec, generated_dir, generated, ".swift")

        obj = staging / f"{spec.lib_name}.o"
        cmd = [
            str(descriptor.compiler),
            "-emit-object",
            "-wmo",
            "-parse-as-library",
            "-O",
            "-module-name", spec.lib_name,
            "-target", descriptor.target,
            "-sdk", str(descriptor.sdk_root),
            "-module-cache-path", str(staging / "ModuleCache"),
            "-import-objc-header", str(header),
            str(glue),
            *[str(s) for s in sources],
            "-o", str(obj),
        ]
        self._run("swiftc", cmd, spec)

        archive = staging / f"lib{spec.lib_name}.a"
        self._run(
            "ar",
            [str(descriptor.tool("ar")), "rcs", str(archive), str(obj)],
            spec,
            extra_env={"ZERO_AR_DATE": "1"},
        )

        result = self._run("nm", [str(descriptor.tool("nm")), "-gU", str(archive)], spec)
        symbols = exported_operation_symbols(parse_nm_output(result.stdout))

        dylib = staging / f"lib{spec.lib_name}.dylib"
        cmd = [
            str(descriptor.compiler),
            "-emit-library",
            "-target", descriptor.target,
            "-sdk", str(descriptor.sdk_root),
            "-module-name", spec.lib_name,
            "-Xlinker", "-install_name", "-Xlinker", f"@rpath/{dylib.name}",
            str(obj),
            *[arg for framework in spec.frameworks for arg in ("-framework", framework)],
            *[f"-l{library}" for library in spec.libraries],
            "-o", str(dylib),
        ]
        self._run("swiftc -emit-library", cmd, spec)

        final = self.module_dir(spec) / archive.name
        shared = self.module_dir(spec) / dylib.name
        os.replace(archive, final)
        os.replace(dylib, shared)
        return CompiledArtifact(
            module=spec.name,
            platform=descriptor.platform,
            path=final,
            kind="static-library",
            exported_symbols=symbols,
            shared_library=shared,
        )

    def _compile_android(
        self,
        spec: BridgeSpec,
        generated_dir: Path,
        generated: GeneratedBridge,
        sources: List[Path],
        staging: Path,
    ) -> CompiledArtifact:
        descriptor = self.descriptor
        glue = self._generated_file(spec, generated_dir, generated, ".kt")
        android_jar = descriptor.tool("android_jar")

        classes_dir = staging / "classes"
        cmd = [
            str(descriptor.compiler),
            "-classpath", str(android_jar),
            "-jvm-target", "1.8",
            "-no-reflect",
            "-d", str(classes_dir),
            str(glue),
            *[str(s) for s in sources],
        ]
        self._run("kotlinc", cmd, spec)

        class_files = sorted(classes_dir.rglob("*.class"))
        if not class_files:
            raise CompilationFailed(
                "kotlinc produced no classes",
                module=spec.name,
                platform=descriptor.platform.value,
            )

        dex_dir = staging / "dex"
        dex_dir.mkdir()
        self._run(
            "d8",
            [
                str(descriptor.tool("java")),
                "-cp", str(descriptor.tool("d8")),
                "com.android.tools.r8.D8",
                "--release",
                "--lib", str(android_jar),
                "--output", str(dex_dir),
                *[str(c) for c in class_files],
            ],
            spec,
        )

        class_names = [
            ".".join(c.relative_to(classes_dir).with_suffix("").parts) for c in class_files
        ]
        result = self._run(
            "javap",
            [str(descriptor.tool("javap")), "-public", "-cp", str(classes_dir), *class_names],
            spec,
        )
        glue_classes = (f"{spec.lib_name}Glue", "CapbCompletion")
        symbols = exported_operation_symbols(parse_javap_output(result.stdout, glue_classes))

        dex = dex_dir / "classes.dex"
        if not dex.exists():
            raise CompilationFailed(
                "d8 produced no classes.dex",
                module=spec.name,
                platform=descriptor.platform.value,
            )
        final = self.module_dir(spec) / "classes.dex"
        os.replace(dex, final)
        return CompiledArtifact(
            module=spec.name,
            platform=descriptor.platform,
            path=final,
            kind="dex",
            exported_symbols=symbols,
        )
