"""Bridge declaration, generation and host-side marshalling."""

from .generator import BridgeGenerator, GeneratedBridge
from .marshal import MarshalError, NativeBridge
from .signature import (
    BaseType,
    MarshalType,
    OperationSignature,
    Ownership,
    Parameter,
    SignatureError,
    parse_declarations,
)
from .spec import BridgeSpec

__all__ = [
    "BaseType",
    "BridgeGenerator",
    "BridgeSpec",
    "GeneratedBridge",
    "MarshalError",
    "MarshalType",
    "NativeBridge",
    "OperationSignature",
    "Ownership",
    "Parameter",
    "SignatureError",
    "parse_declarations",
]
