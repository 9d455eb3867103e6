"""
Server repository for sshdeck
Ties the SSH config document, the metadata store and the password store together
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Union

from .atomic import atomic_write
from .backup_manager import MAX_BACKUPS, BackupManager
from .errors import (
    AlreadyExistsError,
    MetadataError,
    NotFoundError,
    ParseError,
    PasswordStoreError,
    SSHDeckError,
    StorageError,
)
from .fs import FileSystem, LocalFileSystem
from .metadata import MetadataRecord, MetadataStore
from .models import Server
from .password_manager import PasswordManager
from .search_utils import filter_servers
from .ssh_config_document import SSHConfigDocument, new_host_block, parse, serialize

SSH_CONFIG_PERMS = 0o600
PASSWORD_FILE_NAME = "passwords.json"

# Errors from the auxiliary stores that must not fail a committed config change
_AUXILIARY_ERRORS = (SSHDeckError, OSError)


@dataclass
class OperationResult:
    """Outcome of a config-mutating call.

    Reaching a result means the SSH config change was committed. Metadata and
    password side effects are best effort; their failures land here instead of
    being raised.
    """

    alias: str
    action: str
    metadata_error: Optional[Exception] = None
    password_error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.metadata_error is None and self.password_error is None


class ServerRepository:
    """Reads and writes servers across the SSH config, metadata and passwords.

    Nothing is cached: every call re-reads the files it needs, so hand edits
    made between calls are always picked up. Callers must not run two
    mutating calls at the same time.
    """

    def __init__(
        self,
        config_path: str,
        metadata_path: str,
        password_path: Optional[str] = None,
        *,
        fs: Optional[FileSystem] = None,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_backups: int = MAX_BACKUPS,
    ):
        self.config_path = config_path
        self.fs = fs or LocalFileSystem()
        self.logger = logger or logging.getLogger(__name__)
        if password_path is None:
            password_path = os.path.join(os.path.dirname(metadata_path), PASSWORD_FILE_NAME)
        self.metadata = MetadataStore(metadata_path, fs=self.fs, logger=logger, clock=clock)
        self.passwords = PasswordManager(password_path, fs=self.fs, logger=logger)
        self.backups = BackupManager(fs=self.fs, logger=logger, max_backups=max_backups)

    @classmethod
    def from_config(cls, config, config_path: Optional[str] = None, **kwargs) -> "ServerRepository":
        """Build a repository from the paths stored in a :class:`sshdeck.config.Config`.

        *config_path* overrides the SSH config location for this session only.
        """
        kwargs.setdefault('max_backups', config.get_setting('backups.max_backups', MAX_BACKUPS))
        if config_path:
            config_path = os.path.abspath(os.path.expanduser(config_path))
        return cls(
            config_path or config.get_ssh_config_path(),
            config.get_metadata_path(),
            config.get_password_path(),
            **kwargs,
        )

    # ------------------------------------------------------------ config file
    def _load_config(self, action: str) -> SSHConfigDocument:
        try:
            if not self.fs.exists(self.config_path):
                self.logger.debug(f"SSH config {self.config_path} not found, starting empty")
                return SSHConfigDocument()
            data = self.fs.read_bytes(self.config_path)
        except OSError as e:
            raise StorageError(f"failed to load config while {action}: {e}") from e
        try:
            return parse(data)
        except ParseError as e:
            raise ParseError(f"failed to parse config while {action}: {e.reason}", e.line) from e

    def _save_config(self, doc: SSHConfigDocument, action: str) -> None:
        self.backups.ensure_backups(self.config_path)
        try:
            atomic_write(self.config_path, serialize(doc), SSH_CONFIG_PERMS, fs=self.fs, log=self.logger)
        except OSError as e:
            self.logger.warning(f"Failed to save config while {action}: {e}")
            raise StorageError(f"failed to save config while {action}: {e}") from e

    # ---------------------------------------------------------------- queries
    @staticmethod
    def _merge(server: Server, record: Optional[MetadataRecord], has_password: bool) -> Server:
        if record is not None:
            server.tags = list(record.tags)
            server.pinned_at = record.pinned_at
            server.last_seen = record.last_seen
            server.ssh_count = record.ssh_count
        server.has_password = has_password
        return server

    def list_servers(self, query: str = "") -> List[Server]:
        """Return merged servers, filtered by *query* when it is non-empty."""
        servers = self._load_config("listing servers").servers()

        try:
            metadata = self.metadata.load_all()
        except MetadataError as e:
            self.logger.warning(f"Failed to load metadata: {e}")
            metadata = {}
        try:
            passwords = self.passwords.load_passwords()
        except PasswordStoreError as e:
            self.logger.warning(f"Failed to load passwords: {e}")
            passwords = {}

        merged = [
            self._merge(server, metadata.get(server.alias), server.alias in passwords)
            for server in servers
        ]
        if not query:
            return merged
        return filter_servers(merged, query)

    def get_server(self, alias: str) -> Server:
        for server in self.list_servers():
            if server.alias == alias or alias in server.aliases:
                return server
        raise NotFoundError(f"server with alias '{alias}' not found")

    # -------------------------------------------------------------- mutations
    def add_server(self, server: Server) -> OperationResult:
        server.validate()
        alias = server.alias
        action = f"adding server '{alias}'"

        doc = self._load_config(action)
        if doc.find_block(alias) is not None:
            raise AlreadyExistsError(f"server with alias '{alias}' already exists")

        directives = [("HostName", server.host), ("User", server.user), ("Port", str(server.port))]
        directives.extend(("IdentityFile", path) for path in server.identity_files)
        doc.append_block(new_host_block(alias, directives, doc.newline))
        self._save_config(doc, action)

        result = OperationResult(alias, "add")
        if server.password:
            try:
                self.passwords.set_password(alias, server.password)
            except _AUXILIARY_ERRORS as e:
                self.logger.error("Failed to save password while adding server %s: %s", alias, e)
                result.password_error = e
        try:
            self.metadata.update_server(alias, server.tags)
        except _AUXILIARY_ERRORS as e:
            self.logger.error("Failed to save metadata while adding server %s: %s", alias, e)
            result.metadata_error = e

        self.logger.info(f"Added server {alias}")
        return result

    def update_server(self, server: Server, new_server: Server) -> OperationResult:
        """Rewrite the block of *server* with the fields of *new_server*.

        A changed alias renames the pattern in place and moves the metadata
        and password entries with it.
        """
        new_server.validate()
        old_alias, new_alias = server.alias, new_server.alias
        action = f"updating server '{old_alias}'"

        doc = self._load_config(action)
        block = doc.find_block(old_alias)
        if block is None:
            raise NotFoundError(f"server with alias '{old_alias}' not found")

        renamed = old_alias != new_alias
        if renamed:
            if doc.find_block(new_alias) is not None:
                raise AlreadyExistsError(f"server with alias '{new_alias}' already exists")
            doc.rename_pattern(block, old_alias, new_alias)

        for key, value in (("HostName", new_server.host), ("User", new_server.user), ("Port", str(new_server.port))):
            if value:
                doc.upsert_directive(block, key, value)
        identity_files = [f for f in new_server.identity_files if f]
        if [d.value for d in block.directives("IdentityFile")] != identity_files:
            doc.replace_directive_family(block, "IdentityFile", identity_files)

        self._save_config(doc, action)

        result = OperationResult(new_alias, "update")
        if renamed:
            try:
                self.passwords.rename(old_alias, new_alias)
            except _AUXILIARY_ERRORS as e:
                self.logger.error("Failed to move password while renaming server %s: %s", old_alias, e)
                result.password_error = e
        if new_server.password:
            try:
                self.passwords.set_password(new_alias, new_server.password)
            except _AUXILIARY_ERRORS as e:
                self.logger.error("Failed to update password while updating server %s: %s", new_alias, e)
                if result.password_error is None:
                    result.password_error = e
        try:
            self.metadata.update_server(new_alias, new_server.tags, old_alias=old_alias)
        except _AUXILIARY_ERRORS as e:
            self.logger.error("Failed to update metadata while updating server %s: %s", new_alias, e)
            result.metadata_error = e

        if renamed:
            self.logger.info(f"Renamed server {old_alias} to {new_alias}")
        else:
            self.logger.info(f"Updated server {new_alias}")
        return result

    def delete_server(self, server: Union[Server, str]) -> OperationResult:
        alias = server.alias if isinstance(server, Server) else server
        action = f"deleting server '{alias}'"

        doc = self._load_config(action)
        if not doc.remove_block(alias):
            raise NotFoundError(f"server with alias '{alias}' not found")
        self._save_config(doc, action)

        result = OperationResult(alias, "delete")
        try:
            self.passwords.delete_password(alias)
        except _AUXILIARY_ERRORS as e:
            self.logger.warning("Failed to delete password while deleting server %s: %s", alias, e)
            result.password_error = e
        try:
            self.metadata.delete(alias)
        except _AUXILIARY_ERRORS as e:
            self.logger.warning("Failed to delete metadata while deleting server %s: %s", alias, e)
            result.metadata_error = e

        self.logger.info(f"Deleted server {alias}")
        return result

    # ------------------------------------------------------- metadata/passwords
    def set_pinned(self, alias: str, pinned: bool) -> None:
        self.metadata.set_pinned(alias, pinned)

    def record_ssh(self, alias: str) -> None:
        self.metadata.record_ssh(alias)

    def set_tags(self, alias: str, tags: Iterable[str]) -> None:
        self.metadata.set_tags(alias, tags)

    def has_password(self, alias: str) -> bool:
        return self.passwords.has_password(alias)

    def get_decrypted_password(self, alias: str) -> str:
        return self.passwords.get_decrypted_password(alias)


__all__ = ["OperationResult", "ServerRepository", "SSH_CONFIG_PERMS", "PASSWORD_FILE_NAME"]
