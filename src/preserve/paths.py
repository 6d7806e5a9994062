"""
Path and extension policy for saved files.

A trailing ``.gz`` suffix is the only on-disk signal of compression: it selects
gzip when no explicit mode is given, and it is appended automatically when a
gzip file is saved under a name that lacks it.
"""

import logging
import os
from pathlib import Path
from typing import Union

from .compression import CompressionMode

logger = logging.getLogger(__name__)

GZIP_EXTENSION = ".gz"


def derive_mode(path: Union[str, Path]) -> CompressionMode:
    """Return the compression mode implied by the final extension of ``path``."""
    if Path(path).suffix == GZIP_EXTENSION:
        return CompressionMode.GZIP
    return CompressionMode.NONE


def normalize_save_path(
    path: Union[str, Path], mode: Union[CompressionMode, str] = CompressionMode.NONE
) -> Path:
    """
    Resolve the on-disk location a value will be saved to.

    The path is made absolute, every missing ancestor directory is created,
    and ``.gz`` is appended for gzip mode unless already present.

    Args:
        path: Requested destination
        mode: Compression mode the file will be written with

    Returns:
        Absolute destination path

    Raises:
        OSError: If a parent directory cannot be created
    """
    mode = CompressionMode.parse(mode)
    path = Path(os.path.abspath(path))

    path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Ensured directory exists: {path.parent}")

    if mode is CompressionMode.GZIP and not path.name.endswith(GZIP_EXTENSION):
        path = path.with_name(path.name + GZIP_EXTENSION)

    return path
