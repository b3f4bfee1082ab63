"""Host-side marshalling over ctypes.

Converts Python values to the C representation declared by the generated
headers and back. Reference values follow the ownership recorded in the
signature:

    borrowed parameter  Python keeps the memory alive for the duration of the call
    owned parameter     memory comes from the C allocator; the callee frees it
    owned return        copied into Python, then handed to the module's release
                        function
"""

import ctypes
import ctypes.util
import itertools
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from .signature import BaseType, MarshalType, OperationSignature, Ownership


class MarshalError(ValueError):
    """Raised when a value cannot be represented in its declared type."""

    pass


class CapbBuffer(ctypes.Structure):
    """Mirror of ``capb_buffer`` in the generated headers."""

    _fields_ = [("ptr", ctypes.POINTER(ctypes.c_uint8)), ("len", ctypes.c_size_t)]


_CTYPES = {
    BaseType.BOOL: ctypes.c_bool,
    BaseType.I8: ctypes.c_int8,
    BaseType.I16: ctypes.c_int16,
    BaseType.I32: ctypes.c_int32,
    BaseType.I64: ctypes.c_int64,
    BaseType.U8: ctypes.c_uint8,
    BaseType.U16: ctypes.c_uint16,
    BaseType.U32: ctypes.c_uint32,
    BaseType.U64: ctypes.c_uint64,
    BaseType.USIZE: ctypes.c_size_t,
    BaseType.F32: ctypes.c_float,
    BaseType.F64: ctypes.c_double,
}

_optional_structs: Dict[BaseType, type] = {}
_optional_lock = threading.Lock()
_libc = None


def _c_allocator():
    """The C runtime that owns malloc/free for owned parameters."""
    global _libc
    if _libc is None:
        _libc = ctypes.CDLL(ctypes.util.find_library("c"))
        _libc.malloc.restype = ctypes.c_void_p
        _libc.malloc.argtypes = [ctypes.c_size_t]
        _libc.free.restype = None
        _libc.free.argtypes = [ctypes.c_void_p]
    return _libc


def optional_struct(base: BaseType) -> type:
    """Return the ctypes mirror of ``capb_opt_<base>``."""
    with _optional_lock:
        if base not in _optional_structs:
            _optional_structs[base] = type(
                f"capb_opt_{base.value}",
                (ctypes.Structure,),
                {"_fields_": [("present", ctypes.c_bool), ("value", _CTYPES[base])]},
            )
        return _optional_structs[base]


def _integer_bounds(base: BaseType) -> Tuple[int, int]:
    bits = ctypes.sizeof(_CTYPES[base]) * 8
    if base.value.startswith("i"):
        return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    return 0, (1 << bits) - 1


def _check_value(mtype: MarshalType, value: Any) -> Any:
    base = mtype.base
    if base is BaseType.BOOL:
        if not isinstance(value, bool):
            raise MarshalError(f"Expected bool, got {type(value).__name__}")
        return value
    if base.is_integer:
        if isinstance(value, bool) or not isinstance(value, int):
            raise MarshalError(f"Expected int for {base.value}, got {type(value).__name__}")
        low, high = _integer_bounds(base)
        if not low <= value <= high:
            raise MarshalError(f"{value} does not fit in {base.value}")
        return value
    if base.is_float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MarshalError(f"Expected float for {base.value}, got {type(value).__name__}")
        return float(value)
    raise MarshalError(f"{base.value} is not a value type")


def _encode_text(value: Any) -> bytes:
    if not isinstance(value, str):
        raise MarshalError(f"Expected str, got {type(value).__name__}")
    data = value.encode("utf-8")
    if b"\0" in data:
        raise MarshalError("Strings crossing the bridge cannot contain NUL characters")
    return data


def _encode_blob(value: Any) -> bytes:
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise MarshalError(f"Expected bytes, got {type(value).__name__}")
    return bytes(value)


def _allocate(data: bytes, terminate: bool) -> int:
    libc = _c_allocator()
    size = len(data) + (1 if terminate else 0)
    address = libc.malloc(max(size, 1))
    if not address:
        raise MemoryError("malloc failed while marshalling an owned value")
    ctypes.memmove(address, data, len(data))
    if terminate:
        ctypes.memset(address + len(data), 0, 1)
    return address


def param_types(mtype: MarshalType) -> List[Any]:
    """ctypes argument types for one declared parameter."""
    if mtype.base is BaseType.STRING:
        return [ctypes.c_char_p if mtype.ownership is Ownership.BORROWED else ctypes.c_void_p]
    if mtype.base is BaseType.BYTES:
        return [ctypes.POINTER(ctypes.c_uint8), ctypes.c_size_t]
    if mtype.optional:
        return [ctypes.POINTER(_CTYPES[mtype.base])]
    return [_CTYPES[mtype.base]]


def value_type(mtype: MarshalType) -> Any:
    """ctypes type of a returned (or completed) value; None for void."""
    if mtype.is_void:
        return None
    if mtype.base is BaseType.STRING:
        return ctypes.c_void_p
    if mtype.base is BaseType.BYTES:
        return CapbBuffer
    if mtype.optional:
        return optional_struct(mtype.base)
    return _CTYPES[mtype.base]


def encode_argument(mtype: MarshalType, value: Any) -> Tuple[List[Any], List[Any]]:
    """Encode one Python argument.

    Returns:
        Tuple of (ctypes arguments, objects to keep alive until the call returns)
    """
    if value is None:
        if not mtype.optional:
            raise MarshalError(f"None passed for non-optional {mtype}")
        if mtype.base is BaseType.BYTES:
            return [None, 0], []
        return [None], []

    if mtype.base is BaseType.STRING:
        data = _encode_text(value)
        if mtype.ownership is Ownership.OWNED:
            return [_allocate(data, terminate=True)], []
        return [data], [data]

    if mtype.base is BaseType.BYTES:
        data = _encode_blob(value)
        if mtype.ownership is Ownership.OWNED:
            address = _allocate(data, terminate=False)
            return [ctypes.cast(address, ctypes.POINTER(ctypes.c_uint8)), len(data)], []
        array = (ctypes.c_uint8 * max(len(data), 1)).from_buffer_copy(data or b"\0")
        return [ctypes.cast(array, ctypes.POINTER(ctypes.c_uint8)), len(data)], [array]

    checked = _check_value(mtype, value)
    if mtype.optional:
        cell = _CTYPES[mtype.base](checked)
        return [ctypes.pointer(cell)], [cell]
    return [checked], []


def decode_argument(mtype: MarshalType, args: List[Any]) -> Any:
    """Read an encoded argument back the way the receiving side sees it.

    Owned allocations are freed after copying, as the callee would.
    """
    if mtype.base is BaseType.STRING:
        raw = args[0]
        if raw is None:
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        try:
            return ctypes.string_at(raw).decode("utf-8")
        finally:
            _c_allocator().free(raw)

    if mtype.base is BaseType.BYTES:
        pointer, length = args
        if not pointer:
            return None
        data = ctypes.string_at(pointer, length)
        if mtype.ownership is Ownership.OWNED:
            _c_allocator().free(ctypes.cast(pointer, ctypes.c_void_p))
        return data

    if mtype.optional:
        pointer = args[0]
        return None if pointer is None else pointer.contents.value
    return _CTYPES[mtype.base](args[0]).value


def decode_result(mtype: MarshalType, raw: Any, release: Optional[Callable[[Any], None]] = None) -> Any:
    """Convert a returned C value to Python, releasing owned memory.

    Args:
        mtype: Declared return type
        raw: Value produced by ctypes for value_type(mtype)
        release: Release function for owned strings/buffers

    Raises:
        MarshalError: If a non-optional reference came back null
    """
    if mtype.is_void:
        return None

    if mtype.base is BaseType.STRING:
        if not raw:
            if mtype.optional:
                return None
            raise MarshalError("Native side returned null for a non-optional string")
        try:
            return ctypes.string_at(raw).decode("utf-8")
        finally:
            if release is not None:
                release(raw)

    if mtype.base is BaseType.BYTES:
        if not raw.ptr:
            if mtype.optional:
                return None
            raise MarshalError("Native side returned null for a non-optional buffer")
        try:
            return ctypes.string_at(raw.ptr, raw.len)
        finally:
            if release is not None:
                release(raw)

    if mtype.optional:
        return raw.value if raw.present else None
    if isinstance(raw, ctypes._SimpleCData):
        return raw.value
    return raw


def roundtrip(mtype: MarshalType, value: Any) -> Any:
    """Encode a value and read it back as the receiving side would."""
    args, _keepalive = encode_argument(mtype, value)
    return decode_argument(mtype, args)


def completion_type(op: OperationSignature) -> Any:
    """CFUNCTYPE of the completion callback for an async operation."""
    arg_types = [ctypes.c_void_p]
    completed = value_type(op.returns)
    if completed is not None:
        arg_types.append(completed)
    arg_types.append(ctypes.c_char_p)
    return ctypes.CFUNCTYPE(None, *arg_types)


class NativeBridge:
    """Typed view of a compiled bridge library.

    Example usage:
        bridge = NativeBridge(Path("libClipboardHelper.dylib"), "clipboard", OPERATIONS)
        text = bridge.call("getText")

    Asynchronous calls hand native code a completion function pointer. The
    bridge keeps each callback (and the arguments it borrowed) referenced
    until native code has invoked it, whatever happens to the caller in the
    meantime. A callback is never released from inside its own invocation;
    finished ones are dropped once RETIRED_CALLBACKS newer ones have finished.
    """

    RETIRED_CALLBACKS = 64

    def __init__(
        self,
        library: Any,
        module: str,
        operations: Mapping[str, OperationSignature],
    ):
        """
        Args:
            library: Loaded ctypes library (or a path to load with ctypes.CDLL)
            module: Bridge module name (selects the release functions)
            operations: Operation name -> signature, from the host stub
        """
        if not isinstance(library, ctypes.CDLL):
            library = ctypes.CDLL(str(library))
        self.library = library
        self.module = module
        self.operations = dict(operations)
        self._completion_types = {}
        self._pending: Dict[int, Tuple[Any, List[Any]]] = {}
        self._retired: Deque[Tuple[Any, List[Any]]] = deque(maxlen=self.RETIRED_CALLBACKS)
        self._pending_lock = threading.Lock()
        self._tokens = itertools.count()
        self._configure()

    @property
    def pending_calls(self) -> int:
        """Asynchronous calls whose completion has not arrived yet."""
        with self._pending_lock:
            return len(self._pending)

    def _configure(self) -> None:
        release_string = getattr(self.library, f"capb_{self.module}_release_string")
        release_string.argtypes = [ctypes.c_void_p]
        release_string.restype = None
        release_buffer = getattr(self.library, f"capb_{self.module}_release_buffer")
        release_buffer.argtypes = [CapbBuffer]
        release_buffer.restype = None
        self._release_string = release_string
        self._release_buffer = release_buffer

        for name, op in self.operations.items():
            function = getattr(self.library, name)
            arg_types = []
            for param in op.params:
                arg_types.extend(param_types(param.type))
            if op.is_async:
                self._completion_types[name] = completion_type(op)
                arg_types += [ctypes.c_void_p, self._completion_types[name]]
                function.restype = None
            else:
                function.restype = value_type(op.returns)
            function.argtypes = arg_types

    def release(self, mtype: MarshalType) -> Callable[[Any], None]:
        return self._release_buffer if mtype.base is BaseType.BYTES else self._release_string

    def _encode(self, op: OperationSignature, args: Tuple[Any, ...]) -> Tuple[List[Any], List[Any]]:
        if len(args) != len(op.params):
            raise MarshalError(f"{op.name} takes {len(op.params)} arguments, got {len(args)}")
        encoded, keepalive = [], []
        for param, value in zip(op.params, args):
            values, keep = encode_argument(param.type, value)
            encoded.extend(values)
            keepalive.extend(keep)
        return encoded, keepalive

    def call(self, name: str, *args: Any) -> Any:
        """Call a synchronous operation. Blocks the calling thread."""
        op = self.operations[name]
        if op.is_async:
            raise MarshalError(f"{name} completes through a callback; use call_async()")
        encoded, _keepalive = self._encode(op, args)
        raw = getattr(self.library, name)(*encoded)
        return decode_result(op.returns, raw, self.release(op.returns))

    def call_async(
        self,
        name: str,
        args: Tuple[Any, ...],
        on_complete: Callable[[Any, Optional[str]], None],
    ) -> None:
        """Start an asynchronous operation.

        on_complete(value, error) runs on whichever thread the native side
        completes on. The bridge holds the completion callback until then.
        """
        op = self.operations[name]
        encoded, keepalive = self._encode(op, args)
        release = self.release(op.returns)
        token = next(self._tokens)

        def complete(_context, *payload):
            try:
                error = payload[-1]
                if error is not None:
                    on_complete(None, error.decode("utf-8", errors="replace"))
                    return
                value = None
                if not op.returns.is_void:
                    try:
                        value = decode_result(op.returns, payload[0], release)
                    except MarshalError as e:
                        on_complete(None, str(e))
                        return
                on_complete(value, None)
            finally:
                self._retire(token)

        callback = self._completion_types[name](complete)
        with self._pending_lock:
            self._pending[token] = (callback, keepalive)
        try:
            getattr(self.library, name)(*encoded, None, callback)
        except Exception:
            self._retire(token)
            raise

    def _retire(self, token: int) -> None:
        # Still executing when this runs, so park it rather than free it
        with self._pending_lock:
            entry = self._pending.pop(token, None)
            if entry is not None:
                self._retired.append(entry)
