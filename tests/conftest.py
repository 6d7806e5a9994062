"""
Shared fixtures for the preserve test suite.
"""

import tempfile
from pathlib import Path

import orjson
import pytest

from preserve import Serializer, SerializerConfig


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def serializer():
    """A serializer with default settings."""
    return Serializer(SerializerConfig())


def _retag_node(node, renames):
    if isinstance(node, list):
        return [_retag_node(item, renames) for item in node]
    if isinstance(node, dict):
        renamed = {k: _retag_node(v, renames) for k, v in node.items()}
        tag = renamed.get("$type")
        if isinstance(tag, str):
            renamed["$type"] = renames.get(tag, tag)
        return renamed
    return node


@pytest.fixture
def retag():
    """
    Rewrite ``$type`` identifiers in an uncompressed payload.

    Used to fabricate payloads as an older version of a type would have
    written them.
    """

    def _retag(payload: bytes, renames: dict) -> bytes:
        return orjson.dumps(_retag_node(orjson.loads(payload), renames))

    return _retag
