"""
Configuration Management for preserve
=====================================

Settings that shape how values are written and read back.
"""

import logging
from dataclasses import dataclass
from typing import Union

from .compression import CompressionMode

logger = logging.getLogger(__name__)


@dataclass
class SerializerConfig:
    """Configuration for the serializer façade and its codec."""

    # Mode used by stream and bytes surfaces when no mode is passed
    default_compression: Union[CompressionMode, str] = CompressionMode.NONE
    compression_level: int = 9

    # Write "module, version=X" type identifiers so older payloads can be told apart
    stamp_module_versions: bool = False

    # Nesting limit for value graphs
    max_depth: int = 200

    def __post_init__(self):
        """Validate serializer configuration."""
        try:
            self.default_compression = CompressionMode.parse(self.default_compression)
        except ValueError as e:
            raise ValueError(f"Invalid default_compression: {e}") from e

        if not (0 <= self.compression_level <= 9):
            raise ValueError("compression_level must be between 0 and 9")

        if self.max_depth < 1:
            raise ValueError("max_depth must be at least 1")

        logger.debug(
            f"Serializer configured: compression={self.default_compression.value}"
            f"@{self.compression_level}, stamp_versions={self.stamp_module_versions}, "
            f"max_depth={self.max_depth}"
        )

    @classmethod
    def create_size_optimized(cls) -> "SerializerConfig":
        """Create a configuration that gzips everything at the highest level."""
        return cls(default_compression=CompressionMode.GZIP, compression_level=9)

    @classmethod
    def create_performance_optimized(cls) -> "SerializerConfig":
        """Create a configuration that favours speed over file size."""
        return cls(default_compression=CompressionMode.NONE, compression_level=1)
