"""
Object Serializer
=================

Save and load arbitrary values to and from byte buffers, binary streams and
files, optionally gzip-compressed.

Loading reconstructs a value of a requested type. Data written by older
versions of a type is redirected onto the current shape through the type's
compatibility hook (see ``preserve.compat``), and a decoded value whose type
differs from the requested one goes through a single coercion attempt (see
``preserve.coercion``).

Loads run one at a time across the process, guarded by the global resolution
lock; saves never take that lock.

Usage:
    >>> from preserve import save_to_path, load_from_path
    >>>
    >>> path = save_to_path(model, "models/knn.json.gz")  # gzip from the extension
    >>> model = load_from_path(path, KNearestNeighbors)
"""

import asyncio
import io
import logging
from pathlib import Path
from typing import Any, BinaryIO, Optional, Type, TypeVar, Union

from .codec import Decoder, Encoder
from .coercion import coerce
from .compat import ModuleFallback, ModuleResolver, import_module, resolution_scope
from .compression import CompressionMode, compressing_writer, read_payload
from .config import SerializerConfig
from .error_handling import log_performance, persistence_operation_context
from .paths import derive_mode, normalize_save_path

logger = logging.getLogger(__name__)

T = TypeVar("T")

Mode = Optional[Union[CompressionMode, str]]
PathLike = Union[str, Path]


class Serializer:
    """
    Saves values to byte sinks and loads them back as a requested type.

    Args:
        config: Serializer settings (uses defaults if None)
        resolver: Module-loading fallback registered for the duration of each
            load (a ``ModuleResolver`` if None)
    """

    def __init__(
        self,
        config: Optional[SerializerConfig] = None,
        resolver: Optional[ModuleFallback] = None,
    ):
        self.config = config or SerializerConfig()
        self.resolver = resolver or ModuleResolver()

    def _mode(self, mode: Mode) -> CompressionMode:
        if mode is None:
            return self.config.default_compression
        return CompressionMode.parse(mode)

    def _encode(self, value: Any) -> bytes:
        encoder = Encoder(
            max_depth=self.config.max_depth,
            stamp_module_versions=self.config.stamp_module_versions,
        )
        return encoder.encode(value)

    # ------------------------------------------------------------------ save

    def save(self, value: Any, sink: BinaryIO, mode: Mode = None) -> None:
        """
        Write ``value`` to a binary stream.

        The stream is left open. Codec failures raise ``SerializationError``
        before anything is written.
        """
        mode = self._mode(mode)
        with persistence_operation_context("save", compression=mode.value):
            payload = self._encode(value)
            with compressing_writer(sink, mode, self.config.compression_level) as out:
                out.write(payload)

    @log_performance
    def save_to_path(self, value: Any, path: PathLike, mode: Mode = None) -> Path:
        """
        Write ``value`` to a file, replacing any existing content.

        Without an explicit mode the extension decides (``.gz`` means gzip).
        In gzip mode ``.gz`` is appended to the file name if missing.

        Returns:
            The path the file was written to
        """
        mode = derive_mode(path) if mode is None else CompressionMode.parse(mode)
        path = normalize_save_path(path, mode)
        with open(path, "wb") as f:
            self.save(value, f, mode)
        logger.debug(f"Saved {type(value).__qualname__} to {path}")
        return path

    def save_to_bytes(self, value: Any, mode: Mode = None) -> bytes:
        """Serialize ``value`` into an in-memory byte sequence."""
        buffer = io.BytesIO()
        self.save(value, buffer, mode)
        return buffer.getvalue()

    async def save_async(self, value: Any, sink: Any, mode: Mode = None) -> None:
        """
        Write ``value`` to ``sink`` without blocking the event loop.

        ``sink`` is either an asyncio stream writer (anything with ``write`` and
        a coroutine ``drain``) or a regular binary stream, which is written from
        a worker thread.
        """
        data = self.save_to_bytes(value, mode)
        if hasattr(sink, "drain"):
            sink.write(data)
            await sink.drain()
        else:
            await asyncio.to_thread(sink.write, data)

    # ------------------------------------------------------------------ load

    def load(
        self, source: BinaryIO, cls: Optional[Type[T]] = None, mode: Mode = None
    ) -> T:
        """
        Read a value from a binary stream.

        Args:
            source: Stream positioned at the start of a saved payload (left open)
            cls: Requested type; the decoded value is coerced to it if needed
            mode: Compression the payload was written with

        Raises:
            DecompressionError: If gzip was requested but the data is not gzip
            SerializationError: If the payload cannot be decoded
            TypeMismatchError: If the decoded value cannot be coerced to ``cls``
        """
        mode = self._mode(mode)
        target = getattr(cls, "__qualname__", repr(cls))
        with persistence_operation_context("load", target=target, compression=mode.value):
            with resolution_scope(cls, self.resolver) as hook:
                payload = read_payload(source, mode)
                decoder = Decoder(
                    binder=hook.binder,
                    selector=hook.selector,
                    import_module=import_module,
                )
                decoded = decoder.decode(payload)
                return coerce(decoded, cls)

    def load_from_bytes(
        self, data: bytes, cls: Optional[Type[T]] = None, mode: Mode = None
    ) -> T:
        """Read a value from an in-memory byte sequence."""
        return self.load(io.BytesIO(data), cls, mode)

    @log_performance
    def load_from_path(
        self, path: PathLike, cls: Optional[Type[T]] = None, mode: Mode = None
    ) -> T:
        """
        Read a value from a file.

        Without an explicit mode the extension decides (``.gz`` means gzip).

        Raises:
            FileNotFoundError: If ``path`` does not exist
        """
        mode = derive_mode(path) if mode is None else CompressionMode.parse(mode)
        with open(path, "rb") as f:
            return self.load(f, cls, mode)

    def deep_clone(self, value: T) -> T:
        """Return a deep copy of ``value`` made by a save/load round trip."""
        return self.load_from_bytes(self.save_to_bytes(value), type(value))


_default_serializer: Optional[Serializer] = None


def get_serializer() -> Serializer:
    """Return the process-wide default serializer, creating it on first use."""
    global _default_serializer
    if _default_serializer is None:
        _default_serializer = Serializer()
    return _default_serializer


def set_serializer(serializer: Optional[Serializer]) -> None:
    """Replace the default serializer (``None`` resets it to defaults)."""
    global _default_serializer
    _default_serializer = serializer


def save(value: Any, sink: BinaryIO, mode: Mode = None) -> None:
    get_serializer().save(value, sink, mode)


def save_to_path(value: Any, path: PathLike, mode: Mode = None) -> Path:
    return get_serializer().save_to_path(value, path, mode)


def save_to_bytes(value: Any, mode: Mode = None) -> bytes:
    return get_serializer().save_to_bytes(value, mode)


async def save_async(value: Any, sink: Any, mode: Mode = None) -> None:
    await get_serializer().save_async(value, sink, mode)


def load(source: BinaryIO, cls: Optional[Type[T]] = None, mode: Mode = None) -> T:
    return get_serializer().load(source, cls, mode)


def load_from_bytes(data: bytes, cls: Optional[Type[T]] = None, mode: Mode = None) -> T:
    return get_serializer().load_from_bytes(data, cls, mode)


def load_from_path(path: PathLike, cls: Optional[Type[T]] = None, mode: Mode = None) -> T:
    return get_serializer().load_from_path(path, cls, mode)


def deep_clone(value: T) -> T:
    return get_serializer().deep_clone(value)
