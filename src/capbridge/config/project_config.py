"""
capbridge.ini project file parser.

This module parses a project's capbridge.ini and turns each module section into
a BridgeSpec for a given target platform.
"""

import configparser
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..bridge.signature import OperationSignature, SignatureError, parse_declarations
from ..bridge.spec import BridgeSpec
from ..capability.catalog import get_definition
from ..errors import ProjectConfigError
from .target import TargetPlatform

PROJECT_FILE = "capbridge.ini"


class ProjectConfig:
    """
    Parser for capbridge.ini project files.

    Keys may be specialised per platform family (``apple_sources``) or per
    platform (``apple_mobile_frameworks``); specialised values are appended
    to the generic ones.

    Example capbridge.ini:
        [project]
        name = demo

        [module:clipboard]
        capability = clipboard
        lib_name = ClipboardHelper
        apple_sources = native/apple/Clipboard.swift
        android_sources = native/android/ClipboardHelper.kt
        apple_desktop_frameworks = AppKit
        apple_mobile_frameworks = UIKit

    Usage:
        config = ProjectConfig(Path("capbridge.ini"))
        modules = config.get_modules()
        spec = config.get_bridge_spec("clipboard", TargetPlatform.APPLE_MOBILE)
    """

    LIST_KEYS = ("sources", "frameworks", "libraries")

    def __init__(self, ini_path: Path):
        """
        Initialize the parser with a capbridge.ini file.

        Args:
            ini_path: Path to the capbridge.ini file

        Raises:
            ProjectConfigError: If the file doesn't exist or cannot be parsed
        """
        self.ini_path = ini_path
        self.root = ini_path.parent

        if not ini_path.exists():
            raise ProjectConfigError(f"Project file not found: {ini_path}", path=ini_path)

        self.config = configparser.ConfigParser(
            allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
        )

        try:
            self.config.read(ini_path, encoding="utf-8")
        except configparser.Error as e:
            raise ProjectConfigError(f"Failed to parse {ini_path}: {e}", path=ini_path) from e

    @classmethod
    def from_project_dir(cls, project_dir: Path) -> "ProjectConfig":
        return cls(project_dir / PROJECT_FILE)

    @property
    def project_name(self) -> str:
        if self.config.has_option("project", "name"):
            return self.config.get("project", "name").strip()
        return self.root.resolve().name

    def get_modules(self) -> List[str]:
        """
        Get list of all module names defined in the project.

        Returns:
            Module names in file order (e.g., ['clipboard', 'biometric'])
        """
        return [
            section.split(":", 1)[1]
            for section in self.config.sections()
            if section.startswith("module:")
        ]

    def has_module(self, name: str) -> bool:
        return f"module:{name}" in self.config

    def get_module_config(self, name: str) -> Dict[str, str]:
        """
        Get raw configuration for a module, merged over the base [module] section.

        Raises:
            ProjectConfigError: If the module is not defined
        """
        section = f"module:{name}"
        if section not in self.config:
            available = ", ".join(self.get_modules())
            raise ProjectConfigError(
                f"Module '{name}' not found. Available modules: {available or 'none'}",
                path=self.ini_path,
            )

        try:
            module_config = {key: (value or "").strip() for key, value in self.config[section].items()}
            if "module" in self.config:
                base_config = {key: (value or "").strip() for key, value in self.config["module"].items()}
                module_config = {**base_config, **module_config}
        except configparser.Error as e:
            raise ProjectConfigError(
                f"Failed to read [{section}]: {e}", module=name, path=self.ini_path
            ) from e
        return module_config

    @staticmethod
    def _split_list(value: str) -> List[str]:
        # Split on newlines and commas, strip whitespace, filter empty
        items = []
        for line in value.split("\n"):
            for item in line.split(","):
                item = item.strip()
                if item:
                    items.append(item)
        return items

    def _platform_list(self, module_config: Dict[str, str], key: str, platform: TargetPlatform) -> Tuple[str, ...]:
        prefixes = ["", f"{platform.family}_"]
        specific = platform.value.replace("-", "_") + "_"
        if specific not in prefixes:
            prefixes.append(specific)

        items: List[str] = []
        for prefix in prefixes:
            for item in self._split_list(module_config.get(prefix + key, "")):
                if item not in items:
                    items.append(item)
        return tuple(items)

    def _operations(self, name: str, module_config: Dict[str, str]) -> Tuple[Tuple[OperationSignature, ...], Tuple[OperationSignature, ...]]:
        capability = module_config.get("capability")
        required: Tuple[OperationSignature, ...] = ()
        if capability:
            try:
                definition = get_definition(capability)
            except KeyError as e:
                raise ProjectConfigError(str(e.args[0]), module=name, path=self.ini_path) from e
            required = definition.signatures

        declared = module_config.get("operations", "")
        if not declared:
            return required, required
        try:
            return parse_declarations(declared), required
        except SignatureError as e:
            raise ProjectConfigError(
                f"Invalid operation declaration in module '{name}': {e}",
                module=name,
                path=self.ini_path,
            ) from e

    def get_bridge_spec(self, name: str, platform: TargetPlatform) -> BridgeSpec:
        """
        Build the BridgeSpec for a module on a target platform.

        Args:
            name: Module name (the part after ``module:``)
            platform: Target platform selecting the platform-specific keys

        Returns:
            BridgeSpec with sources, frameworks and libraries for the platform

        Raises:
            ProjectConfigError: If the module is missing or its declarations are invalid
        """
        module_config = self.get_module_config(name)
        operations, required = self._operations(name, module_config)

        return BridgeSpec(
            name=name,
            module_path=module_config.get("module_path") or name,
            lib_name=module_config.get("lib_name") or default_lib_name(name),
            root=self.root,
            native_sources=tuple(Path(s) for s in self._platform_list(module_config, "sources", platform)),
            frameworks=self._platform_list(module_config, "frameworks", platform),
            libraries=self._platform_list(module_config, "libraries", platform),
            operations=operations,
            required_operations=required,
        )

    def get_bridge_specs(self, platform: TargetPlatform, modules: Optional[List[str]] = None) -> List[BridgeSpec]:
        """BridgeSpecs for the selected modules (all modules when None)."""
        # Repeated -m flags name a module once; first occurrence keeps its place
        names = list(dict.fromkeys(modules)) if modules else self.get_modules()
        if not names:
            raise ProjectConfigError(f"No [module:<name>] sections in {self.ini_path}", path=self.ini_path)
        return [self.get_bridge_spec(name, platform) for name in names]


def default_lib_name(module: str) -> str:
    """clipboard -> ClipboardHelper, file_dialog -> FileDialogHelper"""
    return "".join(part.capitalize() for part in module.replace("-", "_").split("_")) + "Helper"
