"""
Legacy Type Compatibility
=========================

Makes data written by older versions of a type loadable as its current shape.

A type opts in by exposing a ``CompatibilityHook`` made of up to two parts:

- a ``SerializationBinder`` that maps legacy ``module:QualName`` identifiers
  found in a payload onto current classes;
- a ``SurrogateSelector`` that hands legacy-shaped state to a
  ``SerializationSurrogate`` able to build the current shape.

Hooks are looked up on every load, never cached, in this order per part:

1. the ``compatibility_hook()`` classmethod (``SupportsCompatibility``);
2. the markers set by ``@serialization_binder`` / ``@surrogate_selector``;
3. a private ``_binder`` / ``_selector`` class attribute.

Independently of hooks, every load registers a process-wide module-loading
fallback (a ``ModuleResolver``) for its duration. When a payload names a module
that cannot be imported, such as ``"shapes, version=1.2"``, the fallback retries
with the simple name ``"shapes"``. Registration happens under a global lock so
only one load resolves legacy modules at a time.

Usage:
    from preserve.compat import MappingBinder, serialization_binder

    @serialization_binder(MappingBinder({"old.geometry:Circle": Circle}))
    @dataclass
    class Drawing:
        shapes: list
"""

import importlib
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from types import ModuleType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol, runtime_checkable

from .coercion import coerce
from .error_handling import SerializationError, UnresolvableModuleError

logger = logging.getLogger(__name__)

BINDER_MARKER = "__serialization_binder__"
SELECTOR_MARKER = "__surrogate_selector__"
BINDER_FIELD = "_binder"
SELECTOR_FIELD = "_selector"

ModuleFallback = Callable[[str], ModuleType]

# Process-wide resolution state
_resolution_lock = threading.RLock()
_module_fallbacks: List[ModuleFallback] = []
_fallbacks_guard = threading.Lock()


class SerializationBinder(ABC):
    """Maps type identifiers found in a payload onto loadable classes."""

    @abstractmethod
    def bind_to_type(self, module_name: str, qualname: str) -> Optional[type]:
        """Return the class to instantiate, or ``None`` for default resolution."""


class MappingBinder(SerializationBinder):
    """
    Binder backed by a mapping.

    Keys are either full ``"module:QualName"`` identifiers or bare qualified
    names; full identifiers take precedence. Version qualifiers on the module
    part (``"module, version=1.0"``) are ignored when matching.
    """

    def __init__(self, mapping: Mapping[str, type]):
        self.mapping: Dict[str, type] = dict(mapping)

    def bind_to_type(self, module_name: str, qualname: str) -> Optional[type]:
        for key in (
            f"{module_name}:{qualname}",
            f"{simple_module_name(module_name)}:{qualname}",
            qualname,
        ):
            if key in self.mapping:
                return self.mapping[key]
        return None


class SerializationSurrogate(ABC):
    """Builds a current-shape instance from legacy-shaped state."""

    @abstractmethod
    def reconstruct(self, cls: type, state: Any) -> Any:
        """Return an instance of ``cls`` rebuilt from decoded ``state``."""


class SurrogateSelector:
    """Registry of surrogates keyed by the class they construct."""

    def __init__(self, surrogates: Optional[Mapping[type, SerializationSurrogate]] = None):
        self._surrogates: Dict[type, SerializationSurrogate] = dict(surrogates or {})

    def add_surrogate(self, cls: type, surrogate: SerializationSurrogate) -> None:
        self._surrogates[cls] = surrogate

    def remove_surrogate(self, cls: type) -> None:
        self._surrogates.pop(cls, None)

    def get_surrogate(self, cls: type) -> Optional[SerializationSurrogate]:
        """Return the surrogate for ``cls`` or its nearest registered base class."""
        for klass in cls.__mro__:
            surrogate = self._surrogates.get(klass)
            if surrogate is not None:
                return surrogate
        return None


class HookKind(Enum):
    NONE = "none"
    BINDER = "binder"
    SELECTOR = "selector"
    BOTH = "both"


@dataclass(frozen=True)
class CompatibilityHook:
    """The binder and surrogate selector a type declares, either may be absent."""

    binder: Optional[SerializationBinder] = None
    selector: Optional[SurrogateSelector] = None

    @property
    def kind(self) -> HookKind:
        if self.binder is not None and self.selector is not None:
            return HookKind.BOTH
        if self.binder is not None:
            return HookKind.BINDER
        if self.selector is not None:
            return HookKind.SELECTOR
        return HookKind.NONE


NO_HOOK = CompatibilityHook()


@runtime_checkable
class SupportsCompatibility(Protocol):
    """Capability implemented by types that provide their own hook."""

    @classmethod
    def compatibility_hook(cls) -> CompatibilityHook:
        ...


def serialization_binder(binder: SerializationBinder):
    """Class decorator declaring the binder used when loading the class."""

    def decorator(cls):
        setattr(cls, BINDER_MARKER, binder)
        return cls

    return decorator


def surrogate_selector(selector: SurrogateSelector):
    """Class decorator declaring the surrogate selector used when loading the class."""

    def decorator(cls):
        setattr(cls, SELECTOR_MARKER, selector)
        return cls

    return decorator


def _declared(cls: type, capability: Any, marker: str, field: str, kind: type):
    if isinstance(capability, kind):
        return capability

    declared = getattr(cls, marker, None)
    if isinstance(declared, kind):
        return declared

    declared = getattr(cls, field, None)
    if isinstance(declared, kind):
        return declared

    return None


def find_compatibility_hook(cls: Optional[type]) -> CompatibilityHook:
    """Discover the compatibility hook of ``cls``; absence is not an error."""
    if not isinstance(cls, type):
        return NO_HOOK

    provided = NO_HOOK
    if isinstance(cls, SupportsCompatibility):
        provided = cls.compatibility_hook() or NO_HOOK

    hook = CompatibilityHook(
        binder=_declared(cls, provided.binder, BINDER_MARKER, BINDER_FIELD, SerializationBinder),
        selector=_declared(cls, provided.selector, SELECTOR_MARKER, SELECTOR_FIELD, SurrogateSelector),
    )
    if hook.kind is not HookKind.NONE:
        logger.debug(f"Compatibility hook for {cls.__qualname__}: {hook.kind.value}")
    return hook


def simple_module_name(name: str) -> str:
    """Strip qualifiers such as ``", version=1.2"`` from a module identifier."""
    return name.split(",", 1)[0].strip()


class ModuleResolver:
    """
    Module-loading fallback that retries a failed import by its simple name.

    A name that is already simple is declined with ``UnresolvableModuleError``
    instead of being retried.
    """

    def __init__(self, importer: Callable[[str], ModuleType] = importlib.import_module):
        self.importer = importer

    def __call__(self, name: str) -> ModuleType:
        simple = simple_module_name(name)
        if simple == name:
            raise UnresolvableModuleError(name)

        logger.warning(f"Module '{name}' not found, loading '{simple}' instead")
        return self.importer(simple)


def register_module_fallback(fallback: ModuleFallback) -> None:
    with _fallbacks_guard:
        _module_fallbacks.append(fallback)


def unregister_module_fallback(fallback: ModuleFallback) -> None:
    with _fallbacks_guard:
        try:
            _module_fallbacks.remove(fallback)
        except ValueError:
            pass


def active_module_fallbacks() -> tuple:
    """Return the module-loading fallbacks currently registered."""
    with _fallbacks_guard:
        return tuple(_module_fallbacks)


def _names_missing(error: ModuleNotFoundError, name: str) -> bool:
    missing = error.name
    return missing is None or name == missing or name.startswith(missing + ".")


def import_module(name: str) -> ModuleType:
    """
    Import ``name``, consulting the registered fallbacks if it cannot be found.

    Raises:
        ModuleNotFoundError: If the module is missing and no fallback is registered
        UnresolvableModuleError: If every registered fallback declined
    """
    try:
        return importlib.import_module(name)
    except ModuleNotFoundError as e:
        # A module that exists but fails on one of its own imports is not ours to redirect
        if not _names_missing(e, name):
            raise
        fallbacks = active_module_fallbacks()
        if not fallbacks:
            raise
        error = e

    for fallback in fallbacks:
        try:
            return fallback(name)
        except ImportError as e:
            error = e

    raise UnresolvableModuleError(name) from error


@contextmanager
def resolution_scope(
    target: Optional[type], resolver: Optional[ModuleFallback] = None
) -> Iterator[CompatibilityHook]:
    """
    Hold the global resolution lock and the module-loading fallback for one load.

    Yields the compatibility hook of ``target``. The fallback is unregistered
    and the lock released on every exit path.
    """
    resolver = resolver or ModuleResolver()
    with _resolution_lock:
        hook = find_compatibility_hook(target)
        register_module_fallback(resolver)
        try:
            yield hook
        finally:
            unregister_module_fallback(resolver)


def state_value(state: Mapping[str, Any], name: str, expected_type: Any = None) -> Any:
    """
    Fetch ``name`` from decoded ``state`` and coerce it to ``expected_type``.

    Intended for use inside ``SerializationSurrogate.reconstruct``.
    """
    try:
        value = state[name]
    except (KeyError, TypeError) as e:
        raise SerializationError(
            f"Serialized state has no field '{name}'", {"field": name}
        ) from e
    return coerce(value, expected_type)
