"""
preserve - Object persistence with compression and legacy type compatibility.

This library saves arbitrary Python values to files, streams or byte buffers
and loads them back as a requested type, even when the stored data was written
by an older, structurally different version of that type.

Key Features:
- Typed JSON payloads (orjson) for builtins, dataclasses, enums, plain objects
  and NumPy arrays
- Optional gzip compression, selected explicitly or by a ``.gz`` extension
- Legacy compatibility through per-type binders and surrogate selectors
- Module-loading fallback for payloads that name versioned or moved modules
- Best-effort coercion of decoded values to the requested type
- Thread-safe loading

Quick Start:
    >>> import preserve
    >>>
    >>> # Save to a gzip file (the extension selects compression)
    >>> path = preserve.save_to_path(model, "models/model.bin.gz")
    >>>
    >>> # Load it back as the requested type
    >>> model = preserve.load_from_path(path, MyModel)
    >>>
    >>> # Deep copy through a save/load round trip
    >>> copy = preserve.deep_clone(model)
"""

from .compat import (
    CompatibilityHook,
    HookKind,
    MappingBinder,
    ModuleResolver,
    SerializationBinder,
    SerializationSurrogate,
    SupportsCompatibility,
    SurrogateSelector,
    find_compatibility_hook,
    serialization_binder,
    state_value,
    surrogate_selector,
)
from .compression import CompressionMode
from .config import SerializerConfig
from .error_handling import (
    DecompressionError,
    InvalidCompressionError,
    PersistenceError,
    SerializationError,
    TypeMismatchError,
    UnresolvableModuleError,
)
from .paths import derive_mode, normalize_save_path
from .serializer import (
    Serializer,
    deep_clone,
    get_serializer,
    load,
    load_from_bytes,
    load_from_path,
    save,
    save_async,
    save_to_bytes,
    save_to_path,
    set_serializer,
)

__version__ = "0.1.0"

__all__ = [
    # Core API
    "Serializer",
    "SerializerConfig",
    "CompressionMode",
    "get_serializer",
    "set_serializer",
    "save",
    "save_to_path",
    "save_to_bytes",
    "save_async",
    "load",
    "load_from_bytes",
    "load_from_path",
    "deep_clone",
    # Path policy
    "derive_mode",
    "normalize_save_path",
    # Legacy compatibility
    "CompatibilityHook",
    "HookKind",
    "SerializationBinder",
    "MappingBinder",
    "SerializationSurrogate",
    "SurrogateSelector",
    "SupportsCompatibility",
    "ModuleResolver",
    "find_compatibility_hook",
    "serialization_binder",
    "surrogate_selector",
    "state_value",
    # Errors
    "PersistenceError",
    "DecompressionError",
    "SerializationError",
    "TypeMismatchError",
    "InvalidCompressionError",
    "UnresolvableModuleError",
    # Version info
    "__version__",
]
