"""
Coercion of decoded values to a requested type.

A payload may encode a value under a broader type than the caller asks for,
for example an ``int`` where a ``float`` is requested, or a plain mapping
where a dataclass is requested. ``coerce`` returns values that already match
unchanged and otherwise makes a single conversion attempt.
"""

import dataclasses
import datetime as dt
import enum
import inspect
import logging
import numbers
import pathlib
import types
import typing
import uuid
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Any, Dict, Optional, Union

import numpy as np

from .error_handling import TypeMismatchError

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Exact:
    """A decoded value that already is the requested type."""

    value: Any


@dataclasses.dataclass(frozen=True)
class Other:
    """A decoded value that needs converting to the requested type."""

    value: Any


DecodedValue = Union[Exact, Other]

_SEQUENCE_TYPES = (list, tuple, set, frozenset, np.ndarray)


def _is_union(target: Any) -> bool:
    origin = typing.get_origin(target)
    if origin is Union:
        return True
    # PEP 604 unions (int | None)
    return isinstance(target, types.UnionType)


def matches(value: Any, target: Any) -> bool:
    """Return True if ``value`` can be returned as ``target`` without conversion."""
    if target is None or target is object or target is Any:
        return True
    if _is_union(target):
        return any(matches(value, member) for member in typing.get_args(target))
    if target is type(None):
        return value is None

    origin = typing.get_origin(target)
    if origin is not None:
        return isinstance(origin, type) and isinstance(value, origin)
    if isinstance(target, type):
        # bool is an int subclass but is not a number a caller asked for
        if isinstance(value, bool) and target in (int, float, complex, Decimal, Fraction):
            return False
        return isinstance(value, target)
    return False


def classify(value: Any, target: Any) -> DecodedValue:
    if matches(value, target):
        return Exact(value)
    return Other(value)


def coerce(value: Any, target: Any) -> Any:
    """
    Return ``value`` as an instance of ``target``.

    Raises:
        TypeMismatchError: If the value cannot be converted
    """
    decoded = classify(value, target)
    if isinstance(decoded, Exact):
        return decoded.value

    try:
        converted = _convert(decoded.value, target)
    except _ConversionFailed as e:
        raise TypeMismatchError(type(value), target, e.context) from e.__cause__

    logger.debug(
        f"Coerced decoded {type(value).__qualname__} to {getattr(target, '__qualname__', target)}"
    )
    return converted


class _ConversionFailed(Exception):
    """Internal signal that one conversion attempt did not apply."""

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.context = context or {}


def _convert(value: Any, target: Any) -> Any:
    if matches(value, target):
        return value

    if _is_union(target):
        # Members are tried quietly; only the caller reports a final mismatch
        for member in typing.get_args(target):
            try:
                return _convert(value, member)
            except _ConversionFailed:
                continue
        raise _ConversionFailed()

    origin = typing.get_origin(target)
    cls = origin if origin is not None else target
    if not isinstance(cls, type):
        raise _ConversionFailed()

    try:
        result = _convert_to_class(value, cls)
    except (ValueError, TypeError, ArithmeticError, InvalidOperation) as e:
        raise _ConversionFailed({"reason": str(e)}) from e

    if result is _NO_CONVERSION:
        raise _ConversionFailed()
    return result


_NO_CONVERSION = object()


def _convert_to_class(value: Any, cls: type) -> Any:
    if isinstance(value, bool) and cls is not bool:
        return _NO_CONVERSION

    # Numeric widening
    if cls is float and isinstance(value, numbers.Real):
        return float(value)
    if cls is complex and isinstance(value, numbers.Number):
        return complex(value)
    if cls is int and isinstance(value, numbers.Integral):
        return int(value)
    if cls is int and isinstance(value, float) and value.is_integer():
        return int(value)
    if cls is Decimal and isinstance(value, (numbers.Integral, str)):
        return Decimal(value)
    if cls is Decimal and isinstance(value, float):
        return Decimal(repr(value))
    if cls is Fraction and isinstance(value, (numbers.Rational, Decimal, str)):
        return Fraction(value)
    if cls is np.str_ and isinstance(value, str):
        return cls(value)
    if cls is np.bytes_ and isinstance(value, (bytes, bytearray)):
        return cls(bytes(value))
    if issubclass(cls, np.generic) and isinstance(value, numbers.Number):
        converted = cls(value)
        if converted != value:
            raise ValueError(f"{value!r} does not fit in {cls.__name__}")
        return converted

    # Temporal values from ISO 8601 strings
    if cls is dt.datetime and isinstance(value, str):
        return dt.datetime.fromisoformat(value)
    if cls is dt.date and isinstance(value, str):
        return dt.date.fromisoformat(value)
    if cls is dt.time and isinstance(value, str):
        return dt.time.fromisoformat(value)

    if issubclass(cls, enum.Enum):
        return cls(value)
    if cls is uuid.UUID and isinstance(value, str):
        return uuid.UUID(value)
    if issubclass(cls, pathlib.PurePath) and isinstance(value, str):
        return cls(value)
    if cls is bytes and isinstance(value, (bytearray, memoryview)):
        return bytes(value)

    if isinstance(value, _SEQUENCE_TYPES):
        if cls is np.ndarray:
            return np.asarray(value)
        if cls in (list, tuple, set, frozenset):
            return cls(value.tolist() if isinstance(value, np.ndarray) else value)

    if dataclasses.is_dataclass(cls):
        return _record_to_dataclass(value, cls)
    if _annotations(cls):
        return _record_to_annotated(value, cls)
    return _NO_CONVERSION


def _annotations(cls: type) -> dict:
    annotations = {}
    for klass in reversed(cls.__mro__):
        annotations.update(inspect.get_annotations(klass))
    return annotations


def _as_record(value: Any):
    if isinstance(value, Mapping):
        return value
    if hasattr(value, "__dict__") and not isinstance(value, type):
        return vars(value)
    return None


def _record_to_dataclass(value: Any, cls: type) -> Any:
    record = _as_record(value)
    if record is None:
        return _NO_CONVERSION

    kwargs = {}
    late = {}
    for field in dataclasses.fields(cls):
        if field.name not in record:
            if (
                field.init
                and field.default is dataclasses.MISSING
                and field.default_factory is dataclasses.MISSING
            ):
                raise _ConversionFailed({"missing_field": field.name})
            continue
        if field.init:
            kwargs[field.name] = record[field.name]
        else:
            late[field.name] = record[field.name]

    obj = cls(**kwargs)
    for name, field_value in late.items():
        object.__setattr__(obj, name, field_value)
    return obj


def _record_to_annotated(value: Any, cls: type) -> Any:
    record = _as_record(value)
    if record is None:
        return _NO_CONVERSION

    obj = cls.__new__(cls)
    for name in _annotations(cls):
        if name in record:
            object.__setattr__(obj, name, record[name])
        elif not hasattr(cls, name):
            raise _ConversionFailed({"missing_field": name})
    return obj
