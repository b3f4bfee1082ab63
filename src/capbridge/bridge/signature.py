"""Operation signature model for cross-language bridges.

A signature is declared as text, one operation per line:

    [async] [reentrant] name(param: type, ...) [-> type]

Types are ``[owned|borrowed] base[?]`` where base is one of the primitive
names in BaseType. ``string`` and ``bytes`` are reference types and need an
ownership qualifier; the parser records what was written and leaves the
ownership rules to the bridge generator so the error can name the operation.

Examples:
    getText() -> owned string?
    setText(text: borrowed string)
    async authenticate(reason: borrowed string)
    reentrant isAvailable() -> bool
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class SignatureError(ValueError):
    """Raised when a signature declaration cannot be parsed."""

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class BaseType(Enum):
    """Types that can cross the boundary."""

    VOID = "void"
    BOOL = "bool"
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    USIZE = "usize"
    F32 = "f32"
    F64 = "f64"
    STRING = "string"
    BYTES = "bytes"

    @property
    def is_reference(self) -> bool:
        return self in (BaseType.STRING, BaseType.BYTES)

    @property
    def is_integer(self) -> bool:
        return self.value[0] in "iu"

    @property
    def is_float(self) -> bool:
        return self in (BaseType.F32, BaseType.F64)


class Ownership(Enum):
    """Who frees a reference value after it crosses the boundary.

    OWNED on a parameter: the callee takes the allocation and frees it.
    OWNED on a return: the callee allocates; the caller frees it with the
    module's generated release function.
    BORROWED: the caller keeps the allocation; it is valid only for the call.
    """

    NONE = "none"
    OWNED = "owned"
    BORROWED = "borrowed"


@dataclass(frozen=True)
class MarshalType:
    """A base type plus optionality and ownership."""

    base: BaseType
    optional: bool = False
    ownership: Ownership = Ownership.NONE

    @property
    def is_void(self) -> bool:
        return self.base is BaseType.VOID

    @classmethod
    def parse(cls, text: str) -> "MarshalType":
        """Parse a type expression such as ``owned string?`` or ``i32``.

        Raises:
            SignatureError: If the expression is not a known type
        """
        words = text.strip().split()
        if not words:
            raise SignatureError("Empty type expression")

        ownership = Ownership.NONE
        if len(words) == 2 and words[0] in ("owned", "borrowed"):
            ownership = Ownership(words[0])
            words = words[1:]
        if len(words) != 1:
            raise SignatureError(f"Invalid type expression: '{text.strip()}'")

        name = words[0]
        optional = name.endswith("?")
        if optional:
            name = name[:-1]

        try:
            base = BaseType(name)
        except ValueError:
            raise SignatureError(f"Unknown type: '{name}'") from None

        if base is BaseType.VOID and (optional or ownership is not Ownership.NONE):
            raise SignatureError(f"Invalid type expression: '{text.strip()}'")

        return cls(base=base, optional=optional, ownership=ownership)

    def __str__(self) -> str:
        text = self.base.value + ("?" if self.optional else "")
        if self.ownership is not Ownership.NONE:
            text = f"{self.ownership.value} {text}"
        return text


VOID = MarshalType(BaseType.VOID)


@dataclass(frozen=True)
class Parameter:
    name: str
    type: MarshalType

    def __str__(self) -> str:
        return f"{self.name}: {self.type}"


_DECLARATION = re.compile(
    r"^(?P<modifiers>(?:(?:async|reentrant)\s+)*)"
    r"(?P<name>[^\s(]+)\s*"
    r"\((?P<params>[^)]*)\)\s*"
    r"(?:->\s*(?P<returns>.+))?$"
)


@dataclass(frozen=True)
class OperationSignature:
    """One operation that must exist on both sides of a bridge."""

    name: str
    params: Tuple[Parameter, ...] = ()
    returns: MarshalType = VOID
    is_async: bool = False
    reentrant: bool = False

    @classmethod
    def parse(cls, declaration: str) -> "OperationSignature":
        """Parse a single declaration line.

        Args:
            declaration: Text such as ``getText() -> owned string?``

        Returns:
            Parsed OperationSignature

        Raises:
            SignatureError: If the declaration is malformed
        """
        text = " ".join(declaration.split())
        match = _DECLARATION.match(text)
        if not match:
            raise SignatureError(f"Malformed operation declaration: '{text}'")

        name = match.group("name")
        modifiers = match.group("modifiers").split()

        params = []
        raw_params = match.group("params").strip()
        if raw_params:
            for chunk in raw_params.split(","):
                if ":" not in chunk:
                    raise SignatureError(
                        f"Parameter '{chunk.strip()}' of '{name}' has no type", name
                    )
                param_name, _, param_type = chunk.partition(":")
                try:
                    params.append(Parameter(param_name.strip(), MarshalType.parse(param_type)))
                except SignatureError as e:
                    raise SignatureError(f"{name}: {e}", name) from e

        returns = VOID
        if match.group("returns"):
            try:
                returns = MarshalType.parse(match.group("returns"))
            except SignatureError as e:
                raise SignatureError(f"{name}: {e}", name) from e

        return cls(
            name=name,
            params=tuple(params),
            returns=returns,
            is_async="async" in modifiers,
            reentrant="reentrant" in modifiers,
        )

    def declaration(self) -> str:
        """Canonical text form; parse(declaration()) == self."""
        prefix = ""
        if self.is_async:
            prefix += "async "
        if self.reentrant:
            prefix += "reentrant "
        params = ", ".join(str(p) for p in self.params)
        text = f"{prefix}{self.name}({params})"
        if not self.returns.is_void:
            text += f" -> {self.returns}"
        return text

    def __str__(self) -> str:
        return self.declaration()


def parse_declarations(text: str) -> Tuple[OperationSignature, ...]:
    """Parse a block of declarations, one per non-empty, non-comment line."""
    signatures = []
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if line:
            signatures.append(OperationSignature.parse(line))
    return tuple(signatures)
