"""
Typed JSON Codec
================

Turns a Python value graph into JSON bytes (via orjson) and back.

JSON-native values (``None``, ``bool``, ``int``, ``float``, ``str``, ``list``
and ``dict`` with plain string keys) are written as-is. Anything else becomes a
tagged node::

    {"$type": "module:QualName", ...}

Built-in tags carry their payload under ``$value``, ``$items`` or ``$b64``.
User objects carry ``$state`` and enums carry ``$value``. On decode, the type of
every non-builtin node is resolved through an optional binder, then through the
``import_module`` callable the caller supplies, so both legacy type names and
legacy module names can be redirected onto current ones.

Shared references are not preserved: an object reachable twice is written twice.
"""

import base64
import datetime as dt
import enum
import importlib
import logging
import math
import pathlib
import sys
import types
import uuid
from decimal import Decimal
from fractions import Fraction
from typing import Any, Callable, Dict, Optional

import numpy as np
import orjson

from .error_handling import PersistenceError, SerializationError

logger = logging.getLogger(__name__)

TYPE_KEY = "$type"
STATE_KEY = "$state"
VALUE_KEY = "$value"
ITEMS_KEY = "$items"
BYTES_KEY = "$b64"

_INT64_MIN = -(2**63)
_UINT64_MAX = 2**64 - 1

_UNSUPPORTED = (
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodType,
    types.ModuleType,
    types.GeneratorType,
    types.CoroutineType,
    types.FrameType,
    types.TracebackType,
)

# Immutable builtins whose subclasses are written as their base value
_SCALAR_BASES = (int, float, complex, str, bytes, bytearray)

# Same flag copyreg uses to tell C-implemented classes apart
_HEAPTYPE = 1 << 9


def _native_base(cls: type) -> Optional[type]:
    """Return the first C-implemented base of ``cls`` that carries its own storage."""
    for base in cls.__mro__:
        if base is object:
            break
        if not base.__flags__ & _HEAPTYPE and base.__basicsize__ > object.__basicsize__:
            return base
    return None


def type_identifier(cls: type, stamp_version: bool = False) -> str:
    """Return the ``module:QualName`` identifier written for ``cls``."""
    module = cls.__module__
    if stamp_version:
        version = getattr(sys.modules.get(module.partition(".")[0]), "__version__", None)
        if version:
            module = f"{module}, version={version}"
    return f"{module}:{cls.__qualname__}"


def split_type_identifier(identifier: str):
    """Split ``module:QualName`` into its module and qualified-name parts."""
    module, sep, qualname = identifier.rpartition(":")
    if not sep or not module or not qualname:
        raise SerializationError(
            f"Malformed type identifier: {identifier!r}", {"identifier": identifier}
        )
    return module, qualname


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def _object_state(obj: Any) -> Any:
    """Collect the state of an arbitrary object for ``$state``."""
    getstate = getattr(type(obj), "__getstate__", None)
    if getstate is not None and getstate is not getattr(object, "__getstate__", None):
        return obj.__getstate__()

    has_state = hasattr(obj, "__dict__")
    state = dict(getattr(obj, "__dict__", {}))
    for klass in type(obj).__mro__:
        slots = klass.__dict__.get("__slots__", ())
        if isinstance(slots, str):
            slots = (slots,)
        for slot in slots:
            if slot in ("__dict__", "__weakref__"):
                continue
            has_state = True
            if hasattr(obj, slot):
                state[slot] = getattr(obj, slot)

    if not has_state:
        raise SerializationError(
            f"Object of type {type(obj).__qualname__} exposes no state to serialize",
            {"type": type(obj).__qualname__},
        )
    return state


def _apply_state(obj: Any, state: Any) -> None:
    """Restore ``state`` onto a freshly allocated ``obj``."""
    setstate = getattr(obj, "__setstate__", None)
    if setstate is not None:
        setstate(state)
        return

    if not isinstance(state, dict):
        raise SerializationError(
            f"Cannot restore non-mapping state onto {type(obj).__qualname__}",
            {"type": type(obj).__qualname__},
        )
    for name, value in state.items():
        object.__setattr__(obj, name, value)


class Encoder:
    """Converts value graphs into JSON-native trees."""

    def __init__(self, max_depth: int = 200, stamp_module_versions: bool = False):
        self.max_depth = max_depth
        self.stamp_module_versions = stamp_module_versions
        self._active = set()

    def encode(self, value: Any) -> bytes:
        """Serialize ``value`` to JSON bytes."""
        tree = self.to_tree(value)
        try:
            return orjson.dumps(tree)
        except orjson.JSONEncodeError as e:
            raise SerializationError(f"JSON encoding failed: {e}") from e

    def to_tree(self, value: Any, depth: int = 0) -> Any:
        if depth > self.max_depth:
            raise SerializationError(
                f"Value graph is nested deeper than {self.max_depth} levels",
                {"max_depth": self.max_depth},
            )

        # Scalars; enums first since str and int enums subclass their value type
        if isinstance(value, enum.Enum):
            return {
                TYPE_KEY: self._identifier(type(value)),
                VALUE_KEY: self.to_tree(value.value, depth + 1),
            }
        if value is None or isinstance(value, bool) or type(value) is str:
            return value
        # np.str_ and np.bytes_ go through the scalar subclass path below
        if isinstance(value, np.generic) and not isinstance(value, (str, bytes)):
            return self._encode_numpy_scalar(value)
        if type(value) is int:
            if _INT64_MIN <= value <= _UINT64_MAX:
                return value
            return {TYPE_KEY: "builtins:int", VALUE_KEY: str(value)}
        if type(value) is float:
            if math.isfinite(value):
                return value
            return {TYPE_KEY: "builtins:float", VALUE_KEY: repr(value)}

        builtin = self._encode_builtin(value)
        if builtin is not None:
            return builtin

        if isinstance(value, _UNSUPPORTED):
            raise SerializationError(
                f"Cannot serialize value of type {type(value).__qualname__}",
                {"type": type(value).__qualname__},
            )

        # Containers and objects can form cycles
        marker = id(value)
        if marker in self._active:
            raise SerializationError(
                f"Circular reference detected at {type(value).__qualname__}",
                {"type": type(value).__qualname__},
            )
        self._active.add(marker)
        try:
            return self._encode_compound(value, depth)
        finally:
            self._active.discard(marker)

    def _encode_compound(self, value: Any, depth: int) -> Any:
        if type(value) is list:
            return [self.to_tree(item, depth + 1) for item in value]
        if type(value) is dict:
            if all(type(k) is str and not k.startswith("$") for k in value):
                return {k: self.to_tree(v, depth + 1) for k, v in value.items()}
            return {
                TYPE_KEY: "builtins:dict",
                ITEMS_KEY: [
                    [self.to_tree(k, depth + 1), self.to_tree(v, depth + 1)]
                    for k, v in value.items()
                ],
            }
        if type(value) in (tuple, set, frozenset):
            items = value
            if not isinstance(value, tuple):
                items = self._ordered(value)
            return {
                TYPE_KEY: f"builtins:{type(value).__name__}",
                ITEMS_KEY: [self.to_tree(item, depth + 1) for item in items],
            }
        if isinstance(value, np.ndarray):
            return self._encode_array(value, depth)
        if isinstance(value, type):
            return {TYPE_KEY: "builtins:type", VALUE_KEY: self._identifier(value)}
        if isinstance(value, (list, dict, tuple, set, frozenset)):
            return self._encode_collection_subclass(value, depth)
        if isinstance(value, _SCALAR_BASES):
            return self._encode_scalar_subclass(value, depth)

        native = _native_base(type(value))
        if native is not None:
            raise SerializationError(
                f"Cannot serialize {type(value).__qualname__}: "
                f"subclasses of {native.__qualname__} are not supported",
                {"type": type(value).__qualname__, "base": native.__qualname__},
            )

        return {
            TYPE_KEY: self._identifier(type(value)),
            STATE_KEY: self.to_tree(_object_state(value), depth + 1),
        }

    def _encode_collection_subclass(self, value: Any, depth: int) -> Dict[str, Any]:
        """Encode namedtuples, OrderedDicts and other builtin-collection subclasses."""
        if isinstance(value, dict):
            items = [
                [self.to_tree(k, depth + 1), self.to_tree(v, depth + 1)]
                for k, v in value.items()
            ]
        else:
            if isinstance(value, (set, frozenset)):
                value_items = self._ordered(value)
            else:
                value_items = value
            items = [self.to_tree(item, depth + 1) for item in value_items]

        node = {TYPE_KEY: self._identifier(type(value)), ITEMS_KEY: items}
        extra = getattr(value, "__dict__", None)
        if extra:
            node[STATE_KEY] = self.to_tree(dict(extra), depth + 1)
        return node

    def _encode_scalar_subclass(self, value: Any, depth: int) -> Dict[str, Any]:
        """Encode subclasses of int, float, str and the like by their base value."""
        base = next(b for b in type(value).__mro__ if b in _SCALAR_BASES)
        node = {
            TYPE_KEY: self._identifier(type(value)),
            VALUE_KEY: self.to_tree(base(value), depth + 1),
        }
        extra = getattr(value, "__dict__", None)
        if extra:
            node[STATE_KEY] = self.to_tree(dict(extra), depth + 1)
        return node

    @staticmethod
    def _ordered(items):
        try:
            return sorted(items)
        except TypeError:
            return list(items)

    def _encode_builtin(self, value: Any) -> Optional[Dict[str, Any]]:
        if type(value) in (bytes, bytearray):
            return {
                TYPE_KEY: f"builtins:{type(value).__name__}",
                BYTES_KEY: _b64encode(bytes(value)),
            }
        if type(value) is complex:
            return {TYPE_KEY: "builtins:complex", VALUE_KEY: [repr(value.real), repr(value.imag)]}
        # datetime is a subclass of date, so it must be checked first
        if type(value) is dt.datetime:
            return {TYPE_KEY: "datetime:datetime", VALUE_KEY: value.isoformat()}
        if type(value) is dt.date:
            return {TYPE_KEY: "datetime:date", VALUE_KEY: value.isoformat()}
        if type(value) is dt.time:
            return {TYPE_KEY: "datetime:time", VALUE_KEY: value.isoformat()}
        if type(value) is dt.timedelta:
            return {
                TYPE_KEY: "datetime:timedelta",
                VALUE_KEY: [value.days, value.seconds, value.microseconds],
            }
        if type(value) is Decimal:
            return {TYPE_KEY: "decimal:Decimal", VALUE_KEY: str(value)}
        if type(value) is Fraction:
            return {TYPE_KEY: "fractions:Fraction", VALUE_KEY: str(value)}
        if type(value) is uuid.UUID:
            return {TYPE_KEY: "uuid:UUID", VALUE_KEY: str(value)}
        if isinstance(value, pathlib.PurePath):
            return {TYPE_KEY: self._identifier(type(value)), VALUE_KEY: str(value)}
        return None

    def _encode_numpy_scalar(self, value: np.generic) -> Dict[str, Any]:
        if value.dtype.kind not in "biufc":
            raise SerializationError(
                f"Cannot serialize numpy scalar of dtype {value.dtype}",
                {"dtype": str(value.dtype)},
            )
        return {
            TYPE_KEY: "numpy:generic",
            "dtype": value.dtype.str,
            BYTES_KEY: _b64encode(value.tobytes()),
        }

    def _encode_array(self, value: np.ndarray, depth: int) -> Dict[str, Any]:
        if value.dtype.hasobject:
            return {
                TYPE_KEY: "numpy:ndarray",
                "dtype": "object",
                "shape": list(value.shape),
                ITEMS_KEY: [self.to_tree(item, depth + 1) for item in value.ravel().tolist()],
            }
        return {
            TYPE_KEY: "numpy:ndarray",
            "dtype": value.dtype.str,
            "shape": list(value.shape),
            BYTES_KEY: _b64encode(np.ascontiguousarray(value).tobytes()),
        }

    def _identifier(self, cls: type) -> str:
        if "<locals>" in cls.__qualname__:
            raise SerializationError(
                f"Cannot serialize locally defined type {cls.__qualname__}",
                {"type": cls.__qualname__},
            )
        return type_identifier(cls, self.stamp_module_versions)


class Decoder:
    """
    Rebuilds value graphs from JSON-native trees.

    Args:
        binder: Optional ``SerializationBinder`` consulted before any type is imported
        selector: Optional ``SurrogateSelector`` consulted before any object is built
        import_module: Callable used to import the module part of a type identifier
    """

    def __init__(
        self,
        binder=None,
        selector=None,
        import_module: Callable[[str], types.ModuleType] = importlib.import_module,
    ):
        self.binder = binder
        self.selector = selector
        self.import_module = import_module

    def decode(self, payload: bytes) -> Any:
        """Deserialize JSON bytes produced by :class:`Encoder`."""
        try:
            tree = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise SerializationError(f"Payload is not valid JSON: {e}") from e
        return self.from_tree(tree)

    def from_tree(self, node: Any) -> Any:
        if isinstance(node, list):
            return [self.from_tree(item) for item in node]
        if not isinstance(node, dict):
            return node
        if TYPE_KEY not in node:
            return {k: self.from_tree(v) for k, v in node.items()}

        tag = node[TYPE_KEY]
        if not isinstance(tag, str):
            raise SerializationError(f"Malformed type tag: {tag!r}")
        try:
            return self._decode_tagged(tag, node)
        except PersistenceError:
            raise
        except (KeyError, ValueError, TypeError) as e:
            raise SerializationError(
                f"Malformed node for {tag}: {e}", {"identifier": tag}
            ) from e

    def _decode_tagged(self, tag: str, node: Dict[str, Any]) -> Any:
        builtin = _BUILTIN_DECODERS.get(tag)
        if builtin is not None:
            return builtin(self, node)

        if tag == "builtins:type":
            return self.resolve_type(node[VALUE_KEY])

        cls = self.resolve_type(tag)
        if VALUE_KEY in node:
            # Enums, path-like types and scalar subclasses are rebuilt from a single value
            obj = cls(self.from_tree(node[VALUE_KEY]))
            if STATE_KEY in node:
                _apply_state(obj, self.from_tree(node[STATE_KEY]))
            return obj
        if ITEMS_KEY in node:
            return self._build_collection(cls, node)
        return self._build_object(cls, self.from_tree(node.get(STATE_KEY, {})))

    def _build_collection(self, cls: type, node: Dict[str, Any]) -> Any:
        items = _decode_items(self, node)
        if issubclass(cls, tuple):
            # namedtuples take their fields positionally
            obj = cls(*items) if hasattr(cls, "_fields") else cls(items)
        elif issubclass(cls, dict):
            obj = cls.__new__(cls)
            # __setitem__ keeps OrderedDict's internal ordering consistent
            for key, value in items:
                obj[key] = value
        elif issubclass(cls, list):
            obj = cls.__new__(cls)
            list.extend(obj, items)
        elif issubclass(cls, (set, frozenset)):
            obj = cls(items)
        else:
            raise SerializationError(
                f"{cls.__qualname__} is not a collection type",
                {"type": cls.__qualname__},
            )

        if STATE_KEY in node:
            _apply_state(obj, self.from_tree(node[STATE_KEY]))
        return obj

    def _build_object(self, cls: type, state: Any) -> Any:
        if self.selector is not None:
            surrogate = self.selector.get_surrogate(cls)
            if surrogate is not None:
                logger.debug(f"Reconstructing {cls.__qualname__} through surrogate")
                return surrogate.reconstruct(cls, state)

        try:
            obj = cls.__new__(cls)
        except TypeError as e:
            raise SerializationError(
                f"Cannot instantiate {cls.__qualname__}: {e}", {"type": cls.__qualname__}
            ) from e
        _apply_state(obj, state)
        return obj

    def resolve_type(self, identifier: str) -> type:
        """Resolve a ``module:QualName`` identifier to a class."""
        module_name, qualname = split_type_identifier(identifier)

        if self.binder is not None:
            bound = self.binder.bind_to_type(module_name, qualname)
            if bound is not None:
                logger.debug(f"Binder redirected {identifier} to {bound.__qualname__}")
                return bound

        try:
            target = self.import_module(module_name)
        except ImportError as e:
            raise SerializationError(
                f"Cannot resolve module '{module_name}' for type '{qualname}'",
                {"identifier": identifier},
            ) from e

        try:
            for part in qualname.split("."):
                target = getattr(target, part)
        except AttributeError as e:
            raise SerializationError(
                f"Module '{module_name}' has no type '{qualname}'",
                {"identifier": identifier},
            ) from e

        if not isinstance(target, type):
            raise SerializationError(
                f"'{identifier}' does not name a type", {"identifier": identifier}
            )
        return target


def _decode_items(decoder: Decoder, node: Dict[str, Any]):
    return [decoder.from_tree(item) for item in node[ITEMS_KEY]]


def _decode_numpy_scalar(decoder: Decoder, node: Dict[str, Any]):
    return np.frombuffer(_b64decode(node[BYTES_KEY]), dtype=np.dtype(node["dtype"]))[0]


def _decode_array(decoder: Decoder, node: Dict[str, Any]):
    shape = tuple(node["shape"])
    if node["dtype"] == "object":
        array = np.empty(len(node[ITEMS_KEY]), dtype=object)
        array[:] = _decode_items(decoder, node)
        return array.reshape(shape)
    data = _b64decode(node[BYTES_KEY])
    return np.frombuffer(data, dtype=np.dtype(node["dtype"])).reshape(shape).copy()


_BUILTIN_DECODERS: Dict[str, Callable[[Decoder, Dict[str, Any]], Any]] = {
    "builtins:int": lambda d, n: int(n[VALUE_KEY]),
    "builtins:float": lambda d, n: float(n[VALUE_KEY]),
    "builtins:complex": lambda d, n: complex(float(n[VALUE_KEY][0]), float(n[VALUE_KEY][1])),
    "builtins:bytes": lambda d, n: _b64decode(n[BYTES_KEY]),
    "builtins:bytearray": lambda d, n: bytearray(_b64decode(n[BYTES_KEY])),
    "builtins:tuple": lambda d, n: tuple(_decode_items(d, n)),
    "builtins:set": lambda d, n: set(_decode_items(d, n)),
    "builtins:frozenset": lambda d, n: frozenset(_decode_items(d, n)),
    "builtins:dict": lambda d, n: {
        d.from_tree(k): d.from_tree(v) for k, v in n[ITEMS_KEY]
    },
    "datetime:datetime": lambda d, n: dt.datetime.fromisoformat(n[VALUE_KEY]),
    "datetime:date": lambda d, n: dt.date.fromisoformat(n[VALUE_KEY]),
    "datetime:time": lambda d, n: dt.time.fromisoformat(n[VALUE_KEY]),
    "datetime:timedelta": lambda d, n: dt.timedelta(*n[VALUE_KEY]),
    "decimal:Decimal": lambda d, n: Decimal(n[VALUE_KEY]),
    "fractions:Fraction": lambda d, n: Fraction(n[VALUE_KEY]),
    "uuid:UUID": lambda d, n: uuid.UUID(n[VALUE_KEY]),
    "numpy:generic": _decode_numpy_scalar,
    "numpy:ndarray": _decode_array,
}
