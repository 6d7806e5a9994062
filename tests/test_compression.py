"""
Tests for the compression filters.
"""

import gzip
import io

import pytest

from preserve.compression import (
    CompressionMode,
    compressing_writer,
    decompressing_reader,
    list_compression_modes,
    read_payload,
)
from preserve.error_handling import DecompressionError, InvalidCompressionError


class TestCompressionMode:
    """Test compression mode parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("none", CompressionMode.NONE),
            ("gzip", CompressionMode.GZIP),
            ("GZip", CompressionMode.GZIP),
            (CompressionMode.GZIP, CompressionMode.GZIP),
        ],
    )
    def test_parse(self, value, expected):
        assert CompressionMode.parse(value) is expected

    @pytest.mark.parametrize("value", ["zip", "", None, 1])
    def test_parse_invalid(self, value):
        with pytest.raises(InvalidCompressionError):
            CompressionMode.parse(value)

    def test_list_modes(self):
        assert list_compression_modes() == ["none", "gzip"]


class TestCompressingWriter:
    """Test the write-side filter."""

    def test_none_writes_through(self):
        sink = io.BytesIO()
        with compressing_writer(sink, CompressionMode.NONE) as out:
            out.write(b"payload")
        assert sink.getvalue() == b"payload"

    def test_gzip_leaves_sink_open(self):
        sink = io.BytesIO()
        with compressing_writer(sink, CompressionMode.GZIP) as out:
            out.write(b"payload")
        assert not sink.closed
        assert gzip.decompress(sink.getvalue()) == b"payload"

    def test_gzip_appends_after_existing_content(self):
        sink = io.BytesIO()
        sink.write(b"HEADER")
        with compressing_writer(sink, "gzip") as out:
            out.write(b"body")
        assert sink.getvalue().startswith(b"HEADER")
        assert gzip.decompress(sink.getvalue()[6:]) == b"body"

    def test_gzip_trailer_written_on_error(self):
        sink = io.BytesIO()
        with pytest.raises(RuntimeError):
            with compressing_writer(sink, CompressionMode.GZIP) as out:
                out.write(b"partial")
                raise RuntimeError("interrupted")
        assert not sink.closed
        assert gzip.decompress(sink.getvalue()) == b"partial"


class TestReadPayload:
    """Test the read-side filter."""

    def test_gzip_round_trip(self):
        source = io.BytesIO(gzip.compress(b"x" * 1000))
        assert read_payload(source, CompressionMode.GZIP) == b"x" * 1000
        assert not source.closed

    def test_none_reads_remaining_bytes(self):
        source = io.BytesIO(b"abc")
        with decompressing_reader(source, "none") as reader:
            assert reader.read() == b"abc"

    def test_not_gzip(self):
        with pytest.raises(DecompressionError):
            read_payload(io.BytesIO(b'{"a": 1}'), CompressionMode.GZIP)

    def test_corrupt_body(self):
        data = bytearray(gzip.compress(b"some payload worth compressing" * 10))
        data[20] ^= 0xFF
        with pytest.raises(DecompressionError):
            read_payload(io.BytesIO(bytes(data)), CompressionMode.GZIP)
