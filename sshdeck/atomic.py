"""Write-then-rename file replacement."""

import logging
import os
import secrets
from typing import Optional

from .fs import FileSystem, LocalFileSystem

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def temp_path_for(path: str) -> str:
    """Return a fresh temp file name in the same directory as *path*."""
    directory, name = os.path.split(path)
    return os.path.join(directory, f".{name}.{secrets.token_hex(4)}{TEMP_SUFFIX}")


def atomic_write(
    path: str,
    data: bytes,
    mode: int = 0o600,
    fs: Optional[FileSystem] = None,
    log: Optional[logging.Logger] = None,
) -> None:
    """Replace *path* with *data* so readers see either the old or the new file.

    The temp file lives beside the target so the final rename never crosses a
    filesystem boundary. On failure the temp file is removed and the target is
    left as it was.
    """
    fs = fs or LocalFileSystem()
    log = log or logger

    directory = os.path.dirname(path)
    if directory and not fs.exists(directory):
        fs.makedirs(directory, 0o700)

    tmp_path = temp_path_for(path)
    try:
        fs.write_bytes(tmp_path, data, mode)
        fs.chmod(tmp_path, mode)
        fs.rename(tmp_path, path)
    except BaseException:
        try:
            if fs.exists(tmp_path):
                fs.remove(tmp_path)
        except OSError as exc:
            log.warning("Failed to remove temp file %s: %s", tmp_path, exc)
        raise
    log.debug("Atomically wrote %d bytes to %s", len(data), path)


__all__ = ["atomic_write", "temp_path_for", "TEMP_SUFFIX"]
