"""
Artifact linker for compiled bridge modules.

This module checks that every declared operation made it into a compiled
artifact and produces the ordered link directives the host build consumes.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from ..bridge.spec import BridgeSpec
from ..config.target import TargetPlatform
from ..errors import LinkFailed
from ..toolchain.invoker import CompiledArtifact
from ..toolchain.locator import ToolchainDescriptor


class LinkKind(Enum):
    """Directive kinds, in the order they are emitted."""

    SEARCH_PATH = "search-path"
    RUNTIME_PATH = "runtime-path"
    STATIC_LIB = "static-lib"
    DYLIB = "dylib"
    FRAMEWORK = "framework"
    EMBED_DEX = "embed-dex"
    RUNTIME_LIBRARY = "runtime-library"


@dataclass(frozen=True)
class LinkDirective:
    kind: LinkKind
    value: str

    def render(self) -> str:
        return f"{self.kind.value}={self.value}"


@dataclass
class LinkPlan:
    """Ordered link directives for one module."""

    module: str
    platform: TargetPlatform
    directives: List[LinkDirective] = field(default_factory=list)

    def of_kind(self, kind: LinkKind) -> List[str]:
        return [d.value for d in self.directives if d.kind is kind]

    def render_lines(self) -> List[str]:
        return [d.render() for d in self.directives]

    def to_dict(self) -> dict:
        return {
            "module": self.module,
            "platform": self.platform.value,
            "directives": [{"kind": d.kind.value, "value": d.value} for d in self.directives],
        }


def write_link_file(plans: Sequence[LinkPlan], path: Path) -> Path:
    """Write link plans as JSON (module order preserved)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"modules": [plan.to_dict() for plan in plans]}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
        f.write("\n")
    return path


def _dedupe(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class ArtifactLinker:
    """
    Verifies exported symbols and emits link directives.

    Directive order:
        1. Native search paths (artifact directories, then toolchain runtime paths)
        2. Static libraries
        3. Declared dynamic libraries
        4. Frameworks (Apple; Foundation first, deduplicated)
        5. Embedded DEX payloads (Android)
        6. Shared libraries the host loads at runtime (Apple)
    """

    def verify_symbols(self, spec: BridgeSpec, artifacts: Sequence[CompiledArtifact]) -> None:
        """
        Check every declared operation is exported by at least one artifact.

        Raises:
            LinkFailed: Naming the first missing operation symbol
        """
        exported = set()
        for artifact in artifacts:
            exported |= artifact.exported_symbols

        platform = artifacts[0].platform.value if artifacts else None
        for name in spec.operation_names:
            if name not in exported:
                path = artifacts[0].path if artifacts else None
                raise LinkFailed(
                    f"Undefined symbol '{name}': declared in module '{spec.name}' "
                    + "but not exported by its native sources",
                    symbol=name,
                    module=spec.name,
                    platform=platform,
                    path=path,
                )

    def link(
        self,
        spec: BridgeSpec,
        artifacts: Sequence[CompiledArtifact],
        descriptor: Optional[ToolchainDescriptor] = None,
    ) -> LinkPlan:
        """
        Produce the link plan for one module.

        Args:
            spec: Module being linked
            artifacts: Compiled artifacts for the module
            descriptor: Toolchain, for runtime search paths

        Returns:
            LinkPlan with ordered directives

        Raises:
            LinkFailed: If no artifact exists or a declared symbol is missing
        """
        if not artifacts:
            raise LinkFailed(f"No compiled artifact for module '{spec.name}'", module=spec.name)
        self.verify_symbols(spec, artifacts)

        platform = artifacts[0].platform
        runtime_paths: Tuple[Path, ...] = descriptor.runtime_search_paths if descriptor else ()

        search_paths = _dedupe(
            [str(a.path.parent) for a in artifacts] + [str(p) for p in runtime_paths]
        )
        directives = [LinkDirective(LinkKind.SEARCH_PATH, p) for p in search_paths]
        directives += [LinkDirective(LinkKind.RUNTIME_PATH, str(p)) for p in runtime_paths]

        for artifact in artifacts:
            if artifact.kind == "static-library":
                lib = artifact.path.name
                if lib.startswith("lib"):
                    lib = lib[3:]
                if lib.endswith(".a"):
                    lib = lib[:-2]
                directives.append(LinkDirective(LinkKind.STATIC_LIB, lib))

        directives += [LinkDirective(LinkKind.DYLIB, lib) for lib in _dedupe(spec.libraries)]

        if platform.is_apple:
            frameworks = _dedupe(["Foundation", *spec.frameworks])
            directives += [LinkDirective(LinkKind.FRAMEWORK, fw) for fw in frameworks]

        for artifact in artifacts:
            if artifact.kind == "dex":
                directives.append(LinkDirective(LinkKind.EMBED_DEX, str(artifact.path)))

        directives += [
            LinkDirective(LinkKind.RUNTIME_LIBRARY, str(a.shared_library)) for a in artifacts if a.shared_library
        ]

        logging.debug(f"Link plan for {spec.name}: {len(directives)} directives")
        return LinkPlan(module=spec.name, platform=platform, directives=directives)
