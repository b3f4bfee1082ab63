"""Bridge glue generation.

Given a BridgeSpec and a target platform this module renders:

    Apple (desktop and mobile):
        <Lib>.h            C prototypes, one per operation, plus shared types
        <Lib>Glue.swift    marshalling helpers and the release functions
        <module>_bridge.py host-side signature table

    Android:
        <Lib>Glue.kt       JNI descriptor table and completion interface
        <module>_bridge.py host-side signature table with JNI descriptors

Windows, Linux and unknown targets need no glue and produce an empty
GeneratedBridge.

Generation is a pure function of (BridgeSpec, TargetPlatform). Output never
depends on dict ordering, timestamps or absolute paths, so the content hash can
key a build cache.
"""

import hashlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config.target import TargetPlatform
from ..errors import BridgeGenerationFailed
from .signature import BaseType, MarshalType, OperationSignature, Ownership
from .spec import BridgeSpec

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Names that would collide with C, Swift or Kotlin keywords in the glue
_RESERVED = frozenset({
    "auto", "break", "case", "char", "const", "continue", "default", "do",
    "double", "else", "enum", "extern", "float", "for", "goto", "if", "int",
    "long", "register", "return", "short", "signed", "sizeof", "static",
    "struct", "switch", "typedef", "union", "unsigned", "void", "volatile",
    "while", "bool", "class", "func", "fun", "let", "var", "val", "object",
    "in", "is", "as", "init", "self", "import", "package", "protocol",
})

_GLUE_PREFIX = "capb_"

_C_TYPES = {
    BaseType.BOOL: "bool",
    BaseType.I8: "int8_t",
    BaseType.I16: "int16_t",
    BaseType.I32: "int32_t",
    BaseType.I64: "int64_t",
    BaseType.U8: "uint8_t",
    BaseType.U16: "uint16_t",
    BaseType.U32: "uint32_t",
    BaseType.U64: "uint64_t",
    BaseType.USIZE: "size_t",
    BaseType.F32: "float",
    BaseType.F64: "double",
}

_JNI_TYPES = {
    BaseType.VOID: "V",
    BaseType.BOOL: "Z",
    BaseType.I8: "B",
    BaseType.I16: "S",
    BaseType.U16: "C",
    BaseType.I32: "I",
    BaseType.I64: "J",
    BaseType.F32: "F",
    BaseType.F64: "D",
    BaseType.STRING: "Ljava/lang/String;",
    BaseType.BYTES: "[B",
}

_JNI_BOXED = {
    BaseType.BOOL: "Ljava/lang/Boolean;",
    BaseType.I8: "Ljava/lang/Byte;",
    BaseType.I16: "Ljava/lang/Short;",
    BaseType.U16: "Ljava/lang/Character;",
    BaseType.I32: "Ljava/lang/Integer;",
    BaseType.I64: "Ljava/lang/Long;",
    BaseType.F32: "Ljava/lang/Float;",
    BaseType.F64: "Ljava/lang/Double;",
}

# Types a platform's calling convention cannot represent
_UNMARSHALLABLE = {
    TargetPlatform.ANDROID: frozenset({BaseType.U8, BaseType.U32, BaseType.U64, BaseType.USIZE}),
}


def _call_shape(op: OperationSignature) -> Tuple[Tuple[MarshalType, ...], MarshalType, bool]:
    """Parameter types, return type and completion style; names and reentrancy excluded."""
    return tuple(param.type for param in op.params), op.returns, op.is_async


@dataclass(frozen=True)
class GeneratedBridge:
    """Rendered glue for one module on one platform."""

    module: str
    platform: TargetPlatform
    files: Tuple[Tuple[str, str], ...] = ()

    @property
    def content_hash(self) -> str:
        """SHA-256 over every file name and body, in name order."""
        digest = hashlib.sha256()
        digest.update(f"{self.module}\0{self.platform.value}\0".encode("utf-8"))
        for name, content in self.files:
            digest.update(name.encode("utf-8") + b"\0")
            digest.update(content.encode("utf-8") + b"\0")
        return digest.hexdigest()

    @property
    def file_names(self) -> List[str]:
        return [name for name, _ in self.files]

    def get(self, name: str) -> Optional[str]:
        for file_name, content in self.files:
            if file_name == name:
                return content
        return None

    def find(self, suffix: str) -> Optional[str]:
        """Return the first file name ending with suffix."""
        for name in self.file_names:
            if name.endswith(suffix):
                return name
        return None

    def write(self, directory: Path) -> List[Path]:
        """Write the files into directory, leaving unchanged files untouched.

        Files are written through a temporary sibling and an atomic replace, so
        a failed write never leaves a truncated source behind.

        Returns:
            Paths of all generated files (written or already up to date)
        """
        directory.mkdir(parents=True, exist_ok=True)
        paths = []
        for name, content in self.files:
            path = directory / name
            paths.append(path)
            if path.exists() and path.read_text(encoding="utf-8") == content:
                continue
            fd, temp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                    f.write(content)
                os.replace(temp_name, path)
            except BaseException:
                if os.path.exists(temp_name):
                    os.unlink(temp_name)
                raise
            logging.debug(f"Generated {path}")
        return paths


class BridgeGenerator:
    """Renders bridge glue for a BridgeSpec.

    Example usage:
        generated = BridgeGenerator().generate(spec, TargetPlatform.APPLE_MOBILE)
        generated.write(build_dir / "generated")
    """

    def generate(self, spec: BridgeSpec, platform: TargetPlatform) -> GeneratedBridge:
        """Validate the bridge spec and render all glue files for platform.

        Raises:
            BridgeGenerationFailed: If any operation cannot be bridged
        """
        self.validate(spec, platform)

        if not platform.requires_bridge:
            return GeneratedBridge(module=spec.name, platform=platform)

        files: Dict[str, str] = {}
        if platform.is_apple:
            files[f"{spec.lib_name}.h"] = self._render_c_header(spec, platform)
            files[f"{spec.lib_name}Glue.swift"] = self._render_swift_glue(spec, platform)
        else:
            files[f"{spec.lib_name}Glue.kt"] = self._render_kotlin_glue(spec, platform)
        files[f"{spec.name}_bridge.py"] = self._render_host_stub(spec, platform)

        return GeneratedBridge(
            module=spec.name,
            platform=platform,
            files=tuple(sorted(files.items())),
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, spec: BridgeSpec, platform: TargetPlatform) -> None:
        """Check every declaration is bridgeable for platform."""
        ctx = {"module": spec.name, "platform": platform.value}

        if not _IDENTIFIER.match(spec.name):
            raise BridgeGenerationFailed(
                f"Module name '{spec.name}' is not a valid identifier", **ctx
            )
        if not _IDENTIFIER.match(spec.lib_name):
            raise BridgeGenerationFailed(
                f"Library name '{spec.lib_name}' is not a valid identifier", **ctx
            )
        if not spec.operations:
            raise BridgeGenerationFailed(
                f"Module '{spec.name}' declares no operations", **ctx
            )
        if platform.requires_bridge and not spec.native_sources:
            raise BridgeGenerationFailed(
                f"Module '{spec.name}' has no native sources for {platform.value}; "
                "a bridged platform cannot be built from generated glue alone",
                **ctx,
            )

        declared: Dict[str, OperationSignature] = {}
        for op in spec.operations:
            if op.name in declared:
                raise BridgeGenerationFailed(
                    f"Operation '{op.name}' is declared more than once",
                    operation=op.name, **ctx,
                )
            declared[op.name] = op
            self._validate_operation(op, platform, ctx)

        for required in spec.required_operations:
            op = declared.get(required.name)
            if op is None:
                raise BridgeGenerationFailed(
                    f"Operation '{required.name}' is required by the capability but not declared",
                    operation=required.name, **ctx,
                )
            # The host marshals with the capability's signature, so the native
            # function must take and return exactly those types.
            if _call_shape(op) != _call_shape(required):
                raise BridgeGenerationFailed(
                    f"Operation '{op.name}' is declared as '{op.declaration()}' "
                    + f"but the capability requires '{required.declaration()}'",
                    operation=op.name, **ctx,
                )

    def _validate_operation(self, op: OperationSignature, platform: TargetPlatform, ctx: dict) -> None:
        def fail(reason: str) -> BridgeGenerationFailed:
            return BridgeGenerationFailed(f"{op.name}: {reason}", operation=op.name, **ctx)

        if not _IDENTIFIER.match(op.name) or op.name in _RESERVED:
            raise fail("not a valid native identifier")
        if op.name.startswith(_GLUE_PREFIX):
            raise fail(f"the '{_GLUE_PREFIX}' prefix is reserved for generated glue")

        param_names = set()
        for param in op.params:
            if not _IDENTIFIER.match(param.name) or param.name in _RESERVED:
                raise fail(f"parameter '{param.name}' is not a valid identifier")
            if param.name in param_names or param.name in ("context", "completion"):
                raise fail(f"parameter name '{param.name}' is duplicated or reserved")
            param_names.add(param.name)
            if param.type.is_void:
                raise fail(f"parameter '{param.name}' cannot be void")
            self._check_type(fail, param.type, f"parameter '{param.name}'", platform)

        if not op.returns.is_void:
            self._check_type(fail, op.returns, "return value", platform)
            if op.returns.base.is_reference and op.returns.ownership is Ownership.BORROWED:
                raise fail("a returned reference cannot be borrowed; declare it 'owned'")

    @staticmethod
    def _check_type(fail, mtype: MarshalType, role: str, platform: TargetPlatform) -> None:
        if mtype.base.is_reference and mtype.ownership is Ownership.NONE:
            raise fail(
                f"{role} of type {mtype.base.value} needs an explicit 'owned' or 'borrowed' qualifier"
            )
        if not mtype.base.is_reference and mtype.ownership is not Ownership.NONE:
            raise fail(f"{role} is a value type and cannot carry an ownership qualifier")
        if mtype.base in _UNMARSHALLABLE.get(platform, ()):
            raise fail(f"{role} of type {mtype.base.value} cannot be marshalled on {platform.value}")

    # ------------------------------------------------------------------
    # Apple
    # ------------------------------------------------------------------

    @staticmethod
    def _banner(comment: str, spec: BridgeSpec, platform: TargetPlatform) -> str:
        return f"{comment} Generated by capbridge for module '{spec.name}' ({platform.value}). Do not edit."

    @staticmethod
    def _release_names(spec: BridgeSpec) -> Tuple[str, str]:
        return (
            f"{_GLUE_PREFIX}{spec.name}_release_string",
            f"{_GLUE_PREFIX}{spec.name}_release_buffer",
        )

    @staticmethod
    def _c_param(param) -> str:
        mtype = param.type
        if mtype.base is BaseType.STRING:
            qualifier = "const " if mtype.ownership is Ownership.BORROWED else ""
            return f"{qualifier}char *{param.name}"
        if mtype.base is BaseType.BYTES:
            qualifier = "const " if mtype.ownership is Ownership.BORROWED else ""
            return f"{qualifier}uint8_t *{param.name}, size_t {param.name}_len"
        ctype = _C_TYPES[mtype.base]
        if mtype.optional:
            return f"const {ctype} *{param.name}"
        return f"{ctype} {param.name}"

    @staticmethod
    def _c_value_type(mtype: MarshalType) -> str:
        if mtype.base is BaseType.STRING:
            return "char *"
        if mtype.base is BaseType.BYTES:
            return "capb_buffer "
        if mtype.optional:
            return f"capb_opt_{mtype.base.value} "
        return f"{_C_TYPES[mtype.base]} "

    def _c_prototype(self, spec: BridgeSpec, op: OperationSignature) -> str:
        params = [self._c_param(p) for p in op.params]
        if op.is_async:
            params.append("void *context")
            params.append(f"{spec.lib_name}_{op.name}_completion completion")
            return_type = "void "
        elif op.returns.is_void:
            return_type = "void "
        else:
            return_type = self._c_value_type(op.returns)
        return f"{return_type}{op.name}({', '.join(params) or 'void'});"

    def _ownership_note(self, spec: BridgeSpec, op: OperationSignature) -> Optional[str]:
        release_string, release_buffer = self._release_names(spec)
        notes = []
        for param in op.params:
            if param.type.ownership is Ownership.OWNED:
                notes.append(f"{param.name}: callee owns and frees")
            elif param.type.ownership is Ownership.BORROWED:
                notes.append(f"{param.name}: caller owns, valid for the call only")
        if op.returns.base is BaseType.STRING:
            notes.append(f"result: caller owns, release with {release_string}")
        elif op.returns.base is BaseType.BYTES:
            notes.append(f"result: caller owns, release with {release_buffer}")
        if not notes:
            return None
        return "/* " + "; ".join(notes) + " */"

    def _render_c_header(self, spec: BridgeSpec, platform: TargetPlatform) -> str:
        guard = f"CAPB_{spec.lib_name.upper()}_H"
        release_string, release_buffer = self._release_names(spec)

        optionals = sorted({
            op.returns.base for op in spec.operations
            if op.returns.optional and not op.returns.base.is_reference
        }, key=lambda b: b.value)

        lines = [
            self._banner("/*", spec, platform) + " */",
            f"#ifndef {guard}",
            f"#define {guard}",
            "",
            "#include <stdbool.h>",
            "#include <stddef.h>",
            "#include <stdint.h>",
            "",
            "#ifndef CAPB_BUFFER_DEFINED",
            "#define CAPB_BUFFER_DEFINED",
            "typedef struct capb_buffer {",
            "    uint8_t *ptr;",
            "    size_t len;",
            "} capb_buffer;",
            "#endif",
            "",
        ]

        for base in optionals:
            macro = f"CAPB_OPT_{base.value.upper()}_DEFINED"
            lines += [
                f"#ifndef {macro}",
                f"#define {macro}",
                f"typedef struct capb_opt_{base.value} {{",
                "    bool present;",
                f"    {_C_TYPES[base]} value;",
                f"}} capb_opt_{base.value};",
                "#endif",
                "",
            ]

        for op in spec.operations:
            if not op.is_async:
                continue
            params = ["void *context"]
            if not op.returns.is_void:
                params.append(f"{self._c_value_type(op.returns)}value")
            params.append("const char *error")
            lines.append(
                f"typedef void (*{spec.lib_name}_{op.name}_completion)({', '.join(params)});"
            )
        if any(op.is_async for op in spec.operations):
            lines.append("")

        for op in spec.operations:
            note = self._ownership_note(spec, op)
            if note:
                lines.append(note)
            lines.append(self._c_prototype(spec, op))
        lines += [
            "",
            f"void {release_string}(char *value);",
            f"void {release_buffer}(capb_buffer buffer);",
            "",
            f"#endif /* {guard} */",
            "",
        ]
        return "\n".join(lines)

    def _render_swift_glue(self, spec: BridgeSpec, platform: TargetPlatform) -> str:
        release_string, release_buffer = self._release_names(spec)
        return "\n".join([
            self._banner("//", spec, platform),
            "import Foundation",
            "",
            f'@_cdecl("{release_string}")',
            f"public func {release_string}(_ value: UnsafeMutablePointer<CChar>?) {{",
            "    free(value)",
            "}",
            "",
            f'@_cdecl("{release_buffer}")',
            f"public func {release_buffer}(_ buffer: capb_buffer) {{",
            "    free(buffer.ptr)",
            "}",
            "",
            "/// Copies a borrowed C string; the caller keeps the original.",
            "func capbBorrowString(_ value: UnsafePointer<CChar>?) -> String? {",
            "    guard let value = value else { return nil }",
            "    return String(cString: value)",
            "}",
            "",
            "/// Takes an owned C string and frees it after copying.",
            "func capbTakeString(_ value: UnsafeMutablePointer<CChar>?) -> String? {",
            "    guard let value = value else { return nil }",
            "    defer { free(value) }",
            "    return String(cString: value)",
            "}",
            "",
            "/// Allocates a C string the caller owns.",
            "func capbOwnedString(_ value: String?) -> UnsafeMutablePointer<CChar>? {",
            "    guard let value = value else { return nil }",
            "    return strdup(value)",
            "}",
            "",
            "/// Copies a borrowed byte range; the caller keeps the original.",
            "func capbBorrowBytes(_ ptr: UnsafePointer<UInt8>?, _ len: Int) -> [UInt8]? {",
            "    guard let ptr = ptr else { return nil }",
            "    return Array(UnsafeBufferPointer(start: ptr, count: len))",
            "}",
            "",
            "/// Takes an owned byte range and frees it after copying.",
            "func capbTakeBytes(_ ptr: UnsafeMutablePointer<UInt8>?, _ len: Int) -> [UInt8]? {",
            "    guard let ptr = ptr else { return nil }",
            "    defer { free(ptr) }",
            "    return Array(UnsafeBufferPointer(start: ptr, count: len))",
            "}",
            "",
            "/// Allocates a buffer the caller owns; nil maps to a null pointer.",
            "func capbOwnedBuffer(_ bytes: [UInt8]?) -> capb_buffer {",
            "    guard let bytes = bytes else { return capb_buffer(ptr: nil, len: 0) }",
            "    let ptr = malloc(max(bytes.count, 1))!.assumingMemoryBound(to: UInt8.self)",
            "    bytes.withUnsafeBufferPointer { source in",
            "        if let base = source.baseAddress {",
            "            ptr.initialize(from: base, count: bytes.count)",
            "        }",
            "    }",
            "    return capb_buffer(ptr: ptr, len: bytes.count)",
            "}",
            "",
        ])

    # ------------------------------------------------------------------
    # Android
    # ------------------------------------------------------------------

    @staticmethod
    def _kotlin_package(spec: BridgeSpec) -> str:
        return f"capbridge.{spec.name}"

    def jni_descriptor(self, spec: BridgeSpec, op: OperationSignature) -> str:
        """JNI method descriptor for an operation, e.g. ``(Ljava/lang/String;)V``."""
        def jni(mtype: MarshalType) -> str:
            if mtype.optional and mtype.base in _JNI_BOXED:
                return _JNI_BOXED[mtype.base]
            return _JNI_TYPES[mtype.base]

        params = "".join(jni(p.type) for p in op.params)
        if op.is_async:
            completion = self._kotlin_package(spec).replace(".", "/") + "/CapbCompletion"
            return f"({params}L{completion};)V"
        return f"({params}){jni(op.returns)}"

    def _render_kotlin_glue(self, spec: BridgeSpec, platform: TargetPlatform) -> str:
        lines = [
            self._banner("//", spec, platform),
            f"package {self._kotlin_package(spec)}",
            "",
        ]
        if any(op.is_async for op in spec.operations):
            lines += [
                "/** Completion signal for asynchronous operations; error is null on success. */",
                "fun interface CapbCompletion {",
                "    fun complete(value: Any?, error: String?)",
                "}",
                "",
            ]
        lines += [
            f"object {spec.lib_name}Glue {{",
            f'    const val MODULE = "{spec.name}"',
            "",
            "    /** JNI descriptor of every bridged operation, in declaration order. */",
            "    @JvmField",
            "    val OPERATIONS: Map<String, String> = linkedMapOf(",
        ]
        entries = [
            f'        "{op.name}" to "{self.jni_descriptor(spec, op)}"'
            for op in spec.operations
        ]
        lines.append(",\n".join(entries))
        lines += [
            "    )",
            "",
            "    /** Copies a borrowed array so the callee never retains the caller's buffer. */",
            "    @JvmStatic",
            "    fun borrowBytes(bytes: ByteArray?): ByteArray? = bytes?.copyOf()",
            "}",
            "",
        ]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Host stub
    # ------------------------------------------------------------------

    def _render_host_stub(self, spec: BridgeSpec, platform: TargetPlatform) -> str:
        release_string, release_buffer = self._release_names(spec)
        lines = [
            f'"""Host-side bridge stub for the \'{spec.name}\' module ({platform.value}).',
            "",
            "Generated by capbridge. Do not edit.",
            '"""',
            "",
            "from capbridge.bridge.signature import OperationSignature",
            "",
            f'MODULE = "{spec.name}"',
            f'MODULE_PATH = "{spec.module_path}"',
            f'LIBRARY = "{spec.lib_name}"',
            f'PLATFORM = "{platform.value}"',
        ]
        if platform.is_apple:
            lines += [
                f'RELEASE_STRING = "{release_string}"',
                f'RELEASE_BUFFER = "{release_buffer}"',
            ]
        lines += ["", "OPERATIONS = {"]
        for op in spec.operations:
            lines.append(f'    "{op.name}": OperationSignature.parse("{op.declaration()}"),')
        lines.append("}")
        if platform is TargetPlatform.ANDROID:
            lines += ["", "JNI_DESCRIPTORS = {"]
            for op in spec.operations:
                lines.append(f'    "{op.name}": "{self.jni_descriptor(spec, op)}",')
            lines.append("}")
        lines.append("")
        return "\n".join(lines)
