"""Filesystem primitives used by the sshdeck stores.

Every store talks to disk through a :class:`FileSystem` so tests can swap in
:class:`MemoryFileSystem` and inject failures without touching the real
filesystem.
"""

from __future__ import annotations

import os
import posixpath
import stat
import time
from dataclasses import dataclass
from typing import Dict, List, Protocol, Set


@dataclass(frozen=True)
class FileInfo:
    """Subset of ``os.stat_result`` the stores rely on."""

    size: int
    mode: int
    mtime: float


class FileSystem(Protocol):
    def read_bytes(self, path: str) -> bytes: ...

    def write_bytes(self, path: str, data: bytes, mode: int = 0o600) -> None: ...

    def stat(self, path: str) -> FileInfo: ...

    def exists(self, path: str) -> bool: ...

    def makedirs(self, path: str, mode: int = 0o700) -> None: ...

    def rename(self, src: str, dst: str) -> None: ...

    def remove(self, path: str) -> None: ...

    def listdir(self, path: str) -> List[str]: ...

    def chmod(self, path: str, mode: int) -> None: ...


class LocalFileSystem:
    """:class:`FileSystem` backed by the operating system."""

    def read_bytes(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def write_bytes(self, path: str, data: bytes, mode: int = 0o600) -> None:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        # The mode passed to os.open is filtered by the umask
        os.chmod(path, mode)

    def stat(self, path: str) -> FileInfo:
        st = os.stat(path)
        return FileInfo(size=st.st_size, mode=stat.S_IMODE(st.st_mode), mtime=st.st_mtime)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def makedirs(self, path: str, mode: int = 0o700) -> None:
        os.makedirs(path, mode=mode, exist_ok=True)

    def rename(self, src: str, dst: str) -> None:
        os.replace(src, dst)

    def remove(self, path: str) -> None:
        os.remove(path)

    def listdir(self, path: str) -> List[str]:
        return sorted(os.listdir(path))

    def chmod(self, path: str, mode: int) -> None:
        os.chmod(path, mode)


class MemoryFileSystem:
    """In-memory :class:`FileSystem` for tests.

    Paths are normalised with :mod:`posixpath`; parent directories of written
    files exist implicitly.
    """

    def __init__(self, files: Dict[str, bytes] = None):
        self.files: Dict[str, bytes] = {}
        self.modes: Dict[str, int] = {}
        self.mtimes: Dict[str, float] = {}
        self.dirs: Set[str] = set()
        for path, data in (files or {}).items():
            self.write_bytes(path, data, 0o600)

    @staticmethod
    def _norm(path: str) -> str:
        return posixpath.normpath(str(path))

    def _is_dir(self, path: str) -> bool:
        if path in self.dirs:
            return True
        prefix = path.rstrip("/") + "/"
        return any(name.startswith(prefix) for name in self.files)

    def read_bytes(self, path: str) -> bytes:
        path = self._norm(path)
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    def write_bytes(self, path: str, data: bytes, mode: int = 0o600) -> None:
        path = self._norm(path)
        if self._is_dir(path):
            raise IsADirectoryError(path)
        self.files[path] = bytes(data)
        self.modes[path] = mode
        self.mtimes[path] = time.time()

    def stat(self, path: str) -> FileInfo:
        path = self._norm(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        return FileInfo(size=len(self.files[path]), mode=self.modes[path], mtime=self.mtimes[path])

    def exists(self, path: str) -> bool:
        path = self._norm(path)
        return path in self.files or self._is_dir(path)

    def makedirs(self, path: str, mode: int = 0o700) -> None:
        path = self._norm(path)
        while path not in ("/", ".", ""):
            self.dirs.add(path)
            path = posixpath.dirname(path)

    def rename(self, src: str, dst: str) -> None:
        src, dst = self._norm(src), self._norm(dst)
        if src not in self.files:
            raise FileNotFoundError(src)
        self.files[dst] = self.files.pop(src)
        self.modes[dst] = self.modes.pop(src)
        self.mtimes[dst] = self.mtimes.pop(src)

    def remove(self, path: str) -> None:
        path = self._norm(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        del self.files[path]
        self.modes.pop(path, None)
        self.mtimes.pop(path, None)

    def listdir(self, path: str) -> List[str]:
        path = self._norm(path)
        if not self._is_dir(path):
            raise FileNotFoundError(path)
        prefix = path.rstrip("/") + "/"
        names = set()
        for name in list(self.files) + list(self.dirs):
            if name.startswith(prefix):
                names.add(name[len(prefix):].split("/", 1)[0])
        return sorted(names)

    def chmod(self, path: str, mode: int) -> None:
        path = self._norm(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        self.modes[path] = mode


__all__ = ["FileInfo", "FileSystem", "LocalFileSystem", "MemoryFileSystem"]
