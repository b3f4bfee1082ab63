"""Exported-symbol readers for compiled artifacts.

Parses ``nm -gU`` output (Mach-O static archives) and ``javap -public``
output (compiled Kotlin classes) into sets of operation symbol names.
"""

import re
from typing import FrozenSet, Iterable, Set

# Prefixes that belong to generated glue or the Swift runtime, not operations
GLUE_PREFIXES = ("capb_", "swift_", "__swift", "_swift")

# Swift mangling prefixes ($s = Swift 5, $S = Swift 4.2, _T0 = Swift 4)
_SWIFT_MANGLED = ("$s", "$S", "_T0", "$e")

_NM_DEFINED = set("TDSBCRIVW")

_JAVAP_METHOD = re.compile(r"^\s*public\b[^(=]*?\b([A-Za-z_][\w$]*)\s*\(")
_JAVAP_CLASS = re.compile(r"\b(?:class|interface)\s+([\w.$]+)")


def parse_nm_output(output: str) -> Set[str]:
    """Defined global symbols from ``nm -gU`` output.

    Archive member headers (``libX.a(Glue.o):``) and undefined entries are
    skipped. Names are returned as nm prints them, underscore included.
    """
    symbols = set()
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2 or line.rstrip().endswith(":"):
            continue
        kind, name = (parts[1], parts[2]) if len(parts) >= 3 else (parts[0], parts[1])
        if kind.upper() in _NM_DEFINED:
            symbols.add(name)
    return symbols


def parse_javap_output(output: str, exclude_classes: Iterable[str] = ()) -> Set[str]:
    """Public method names from ``javap -public`` output.

    Args:
        output: javap stdout, possibly covering several classes
        exclude_classes: Simple class names whose methods are ignored

    Returns:
        Method names (constructors and synthetic ``$`` methods excluded)
    """
    excluded = set(exclude_classes)
    methods = set()
    current = ""
    for line in output.splitlines():
        if "{" in line:
            match = _JAVAP_CLASS.search(line)
            if match:
                current = match.group(1).rsplit(".", 1)[-1]
            continue
        if current in excluded:
            continue
        match = _JAVAP_METHOD.match(line)
        if not match:
            continue
        name = match.group(1)
        if name == current or "$" in name:
            continue
        methods.add(name)
    return methods


def exported_operation_symbols(symbols: Iterable[str]) -> FrozenSet[str]:
    """Reduce raw symbol names to candidate operation names.

    Mach-O leading underscores are stripped; Swift-mangled names and glue
    helpers are dropped.
    """
    result = set()
    for symbol in symbols:
        if symbol.startswith(_SWIFT_MANGLED):
            continue
        name = symbol[1:] if symbol.startswith("_") else symbol
        if not name or name.startswith(_SWIFT_MANGLED) or name.startswith(GLUE_PREFIXES):
            continue
        if "." in name or "$" in name:
            continue
        result.add(name)
    return frozenset(result)
