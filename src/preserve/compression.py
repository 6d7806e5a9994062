"""
Compression Utilities
=====================

Transparent stream compression for saved payloads.

Supported modes:
- none: payload bytes are written to / read from the sink as-is
- gzip: payload bytes are wrapped in a standard gzip container

The compressing and decompressing filters never close the underlying sink or
source; the caller owns its lifetime.

Usage:
    from preserve.compression import CompressionMode, compressing_writer, read_payload

    with compressing_writer(buffer, CompressionMode.GZIP) as out:
        out.write(payload)

    payload = read_payload(buffer, CompressionMode.GZIP)
"""

import gzip
import logging
import zlib
from contextlib import contextmanager
from enum import Enum
from typing import BinaryIO, Iterator, Union

from .error_handling import DecompressionError, InvalidCompressionError

logger = logging.getLogger(__name__)


class CompressionMode(str, Enum):
    """How a payload is wrapped on its way to or from a byte sink."""

    NONE = "none"
    GZIP = "gzip"

    @classmethod
    def parse(cls, value: Union["CompressionMode", str]) -> "CompressionMode":
        """Accept a mode or its (case-insensitive) name.

        Raises
        ------
        InvalidCompressionError
            If ``value`` does not name a known mode.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
        raise InvalidCompressionError(
            f"Unsupported compression mode: {value!r}. "
            f"Supported: {[m.value for m in cls]}",
            {"compression": repr(value)},
        )


def list_compression_modes():
    """List the names of all supported compression modes."""
    return [mode.value for mode in CompressionMode]


@contextmanager
def compressing_writer(
    sink: BinaryIO,
    mode: Union[CompressionMode, str] = CompressionMode.NONE,
    compresslevel: int = 9,
) -> Iterator[BinaryIO]:
    """Yield a writable stream that compresses into ``sink`` according to ``mode``.

    The gzip filter is flushed and closed on exit, which writes the gzip
    trailer, but ``sink`` itself is left open.
    """
    mode = CompressionMode.parse(mode)
    if mode is CompressionMode.NONE:
        yield sink
        return

    # mtime=0 and an empty filename keep the header byte-for-byte reproducible
    gz = gzip.GzipFile(
        filename="", fileobj=sink, mode="wb", compresslevel=compresslevel, mtime=0
    )
    try:
        yield gz
    finally:
        gz.close()


@contextmanager
def decompressing_reader(
    source: BinaryIO, mode: Union[CompressionMode, str] = CompressionMode.NONE
) -> Iterator[BinaryIO]:
    """Yield a readable stream that decompresses ``source`` according to ``mode``.

    ``source`` is left open on exit.
    """
    mode = CompressionMode.parse(mode)
    if mode is CompressionMode.NONE:
        yield source
        return

    gz = gzip.GzipFile(fileobj=source, mode="rb")
    try:
        yield gz
    finally:
        gz.close()


def read_payload(
    source: BinaryIO, mode: Union[CompressionMode, str] = CompressionMode.NONE
) -> bytes:
    """Read the whole payload from ``source``, decompressing it if needed.

    Raises
    ------
    DecompressionError
        If ``mode`` is gzip and the bytes are not a valid gzip stream.
    """
    mode = CompressionMode.parse(mode)
    with decompressing_reader(source, mode) as reader:
        try:
            payload = reader.read()
        except (gzip.BadGzipFile, EOFError, zlib.error) as e:
            raise DecompressionError(
                f"Invalid {mode.value} data: {e}", {"compression": mode.value}
            ) from e

    logger.debug(f"Read {len(payload)} payload bytes ({mode.value})")
    return payload
