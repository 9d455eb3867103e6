import pytest

from sshdeck.errors import (
    AlreadyExistsError,
    MetadataError,
    NotFoundError,
    ParseError,
    PasswordStoreError,
    ValidationError,
)
from sshdeck.fs import MemoryFileSystem
from sshdeck.models import Server
from sshdeck.repository import ServerRepository

from conftest import FakeClock

CONFIG = "/home/u/.ssh/config"
METADATA = "/home/u/.config/sshdeck/metadata.json"
PASSWORDS = "/home/u/.config/sshdeck/passwords.json"

INITIAL = (
    b"# Personal hosts\n"
    b"Host db1\n"
    b"    HostName 10.0.0.5\n"
    b"    User admin\n"
    b"    # keep me\n"
    b"    Port 22\n"
    b"\n"
    b"Host web web.internal\n"
    b"    HostName web.example.com\n"
    b"\n"
    b"Host *\n"
    b"    ServerAliveInterval 30\n"
)


def _repo(fs, **kwargs):
    kwargs.setdefault("clock", FakeClock())
    return ServerRepository(CONFIG, METADATA, PASSWORDS, fs=fs, **kwargs)


@pytest.fixture
def fs():
    return MemoryFileSystem({CONFIG: INITIAL})


def test_list_servers_merges_defaults(fs):
    servers = _repo(fs).list_servers()

    assert [s.alias for s in servers] == ["db1", "web"]
    db1 = servers[0]
    assert db1.tags == []
    assert db1.pinned_at is None
    assert db1.ssh_count == 0
    assert db1.has_password is False
    assert servers[1].aliases == ["web", "web.internal"]


def test_missing_config_lists_nothing():
    assert _repo(MemoryFileSystem()).list_servers() == []


def test_rename_with_tags_preserves_everything_else(fs):
    repo = _repo(fs)
    repo.record_ssh("db1")
    repo.passwords.set_password("db1", "pw")

    old = repo.get_server("db1")
    new = Server(alias="db1-prod", host="10.0.0.5", user="admin", port=2222, tags=["prod"])
    result = repo.update_server(old, new)

    assert result.ok
    assert fs.read_bytes(CONFIG) == INITIAL.replace(b"Host db1\n", b"Host db1-prod\n").replace(
        b"Port 22\n", b"Port 2222\n"
    )
    server = repo.get_server("db1-prod")
    assert server.tags == ["prod"]
    assert server.ssh_count == 1
    assert server.has_password
    assert repo.get_decrypted_password("db1-prod") == "pw"
    assert "db1" not in repo.metadata.load_all()
    with pytest.raises(NotFoundError):
        repo.get_server("db1")


def test_first_save_writes_pristine_and_rolling_backup(fs):
    repo = _repo(fs)
    repo.add_server(Server(alias="new", host="1.2.3.4"))

    assert fs.read_bytes(CONFIG + ".original.backup") == INITIAL
    assert len(repo.backups.list_backups(CONFIG)) == 1
    assert fs.modes[CONFIG] == 0o600


def test_add_server_appends_block(fs):
    repo = _repo(fs)
    result = repo.add_server(
        Server(alias="cache", host="10.0.0.9", user="ops", identity_files=["~/.ssh/id_cache"], tags=["infra"])
    )

    assert result.ok
    assert fs.read_bytes(CONFIG) == INITIAL + (
        b"\n"
        b"Host cache\n"
        b"    HostName 10.0.0.9\n"
        b"    User ops\n"
        b"    Port 22\n"
        b"    IdentityFile ~/.ssh/id_cache\n"
    )
    assert repo.get_server("cache").tags == ["infra"]


def test_add_server_to_missing_config_creates_it():
    fs = MemoryFileSystem()
    repo = _repo(fs)
    repo.add_server(Server(alias="a", host="h", password="pw"))

    assert fs.read_bytes(CONFIG) == b"Host a\n    HostName h\n    Port 22\n"
    assert repo.has_password("a")
    assert not fs.exists(CONFIG + ".original.backup")


def test_add_existing_alias_changes_nothing(fs):
    repo = _repo(fs)
    with pytest.raises(AlreadyExistsError):
        repo.add_server(Server(alias="web.internal", host="x"))
    assert fs.read_bytes(CONFIG) == INITIAL
    assert repo.backups.list_backups(CONFIG) == []


@pytest.mark.parametrize(
    "server",
    [
        Server(alias=""),
        Server(alias="two words"),
        Server(alias="web*"),
        Server(alias="ok", port=70000),
        Server(alias='o"brien'),
        Server(alias="it's"),
        Server(alias="back\\slash"),
    ],
)
def test_invalid_server_is_rejected(fs, server):
    with pytest.raises(ValidationError):
        _repo(fs).add_server(server)
    assert fs.read_bytes(CONFIG) == INITIAL


def test_rename_onto_existing_alias_is_rejected(fs):
    repo = _repo(fs)
    with pytest.raises(AlreadyExistsError):
        repo.update_server(repo.get_server("db1"), Server(alias="web", host="10.0.0.5"))
    assert fs.read_bytes(CONFIG) == INITIAL


def test_update_missing_server_raises_not_found(fs):
    repo = _repo(fs)
    with pytest.raises(NotFoundError):
        repo.update_server(Server(alias="ghost"), Server(alias="ghost", host="x"))


def test_update_replaces_identity_files_only_when_changed(fs):
    repo = _repo(fs)
    web = repo.get_server("web")
    repo.update_server(web, Server(alias="web", host="web.example.com", identity_files=["~/.ssh/a", "~/.ssh/b"]))

    data = fs.read_bytes(CONFIG)
    assert b"    IdentityFile ~/.ssh/a\n    IdentityFile ~/.ssh/b\n" in data
    assert repo.get_server("web").identity_files == ["~/.ssh/a", "~/.ssh/b"]


def test_delete_server_removes_block_metadata_and_password(fs):
    repo = _repo(fs)
    repo.set_pinned("db1", True)
    repo.passwords.set_password("db1", "pw")

    result = repo.delete_server("db1")

    assert result.ok
    assert fs.read_bytes(CONFIG) == INITIAL.replace(
        b"Host db1\n    HostName 10.0.0.5\n    User admin\n    # keep me\n    Port 22\n\n", b""
    )
    assert repo.metadata.load_all() == {}
    assert not repo.has_password("db1")

    with pytest.raises(NotFoundError):
        repo.delete_server("db1")


def test_hand_edits_are_picked_up_between_calls(fs):
    repo = _repo(fs)
    assert len(repo.list_servers()) == 2
    fs.write_bytes(CONFIG, INITIAL + b"Host extra\n")
    assert [s.alias for s in repo.list_servers()] == ["db1", "web", "extra"]


def test_filtering_matches_tags_and_aliases(fs):
    repo = _repo(fs)
    repo.set_tags("db1", ["prod"])

    assert [s.alias for s in repo.list_servers("PROD")] == ["db1"]
    assert [s.alias for s in repo.list_servers("internal")] == ["web"]
    assert repo.list_servers("nothing-matches") == []


def test_corrupt_metadata_does_not_block_listing_or_saving(fs):
    fs.write_bytes(METADATA, b"{broken")
    repo = _repo(fs)

    assert [s.alias for s in repo.list_servers()] == ["db1", "web"]

    result = repo.add_server(Server(alias="new", host="h", tags=["x"]))
    assert not result.ok
    assert isinstance(result.metadata_error, MetadataError)
    assert b"Host new\n" in fs.read_bytes(CONFIG)


def test_password_failure_is_reported_not_raised(fs):
    class NoPasswordWrites(MemoryFileSystem):
        def rename(self, src, dst):
            if dst == PASSWORDS:
                raise PermissionError(dst)
            super().rename(src, dst)

    fs = NoPasswordWrites({CONFIG: INITIAL})
    repo = _repo(fs)
    result = repo.add_server(Server(alias="new", host="h", password="pw"))

    assert isinstance(result.password_error, PasswordStoreError)
    assert result.metadata_error is None
    assert repo.get_server("new").has_password is False


def test_config_write_failure_raises_and_keeps_file():
    class ReadOnlyConfig(MemoryFileSystem):
        def rename(self, src, dst):
            if dst == CONFIG:
                raise PermissionError(dst)
            super().rename(src, dst)

    fs = ReadOnlyConfig({CONFIG: INITIAL})
    with pytest.raises(OSError):
        _repo(fs).add_server(Server(alias="new", host="h"))
    assert fs.read_bytes(CONFIG) == INITIAL


def test_unparsable_config_raises_parse_error():
    fs = MemoryFileSystem({CONFIG: b"Host \"broken\n"})
    with pytest.raises(ParseError):
        _repo(fs).list_servers()


def test_from_config_uses_configured_paths(tmp_path):
    class StubConfig:
        def get_setting(self, key, default=None):
            return {"backups.max_backups": 4}.get(key, default)

        def get_ssh_config_path(self):
            return str(tmp_path / "ssh" / "config")

        def get_metadata_path(self):
            return str(tmp_path / "meta.json")

        def get_password_path(self):
            return str(tmp_path / "pw.json")

    repo = ServerRepository.from_config(StubConfig())
    assert repo.config_path == str(tmp_path / "ssh" / "config")
    assert repo.metadata.path == str(tmp_path / "meta.json")
    assert repo.passwords.path == str(tmp_path / "pw.json")
    assert repo.backups.max_backups == 4

    override = ServerRepository.from_config(StubConfig(), str(tmp_path / "other"))
    assert override.config_path == str(tmp_path / "other")


def test_rename_to_alias_with_quote_is_rejected_before_saving(fs):
    repo = _repo(fs)
    with pytest.raises(ValidationError):
        repo.update_server(repo.get_server("db1"), Server(alias='o"brien', host="x"))

    assert fs.read_bytes(CONFIG) == INITIAL
    assert [s.alias for s in repo.list_servers()] == ["db1", "web"]


def test_full_lifecycle_keeps_pin_and_password_across_rename():
    fs = MemoryFileSystem()
    repo = _repo(fs)

    repo.add_server(Server(alias="db1", host="10.0.0.5", user="admin", password="s3cr3t", tags=["db"]))
    listed = repo.list_servers()
    assert [s.alias for s in listed] == ["db1"]
    assert listed[0].has_password
    assert repo.get_decrypted_password("db1") == "s3cr3t"

    repo.set_pinned("db1", True)
    pinned_at = repo.get_server("db1").pinned_at
    assert pinned_at is not None

    result = repo.update_server(
        repo.get_server("db1"),
        Server(alias="db1-prod", host="10.0.0.5", user="admin", port=2222, tags=["prod"]),
    )
    assert result.ok
    renamed = repo.get_server("db1-prod")
    assert renamed.pinned_at == pinned_at
    assert renamed.tags == ["prod"]
    assert renamed.port == 2222
    assert repo.get_decrypted_password("db1-prod") == "s3cr3t"

    repo.delete_server("db1-prod")
    assert repo.list_servers() == []
    assert repo.has_password("db1-prod") is False
    assert repo.metadata.load_all() == {}


def test_new_password_is_stored_even_if_moving_the_old_one_fails(fs, monkeypatch):
    repo = _repo(fs)
    repo.passwords.set_password("db1", "old")

    def broken_rename(old, new):
        raise PasswordStoreError("cannot move")

    monkeypatch.setattr(repo.passwords, "rename", broken_rename)
    result = repo.update_server(
        repo.get_server("db1"), Server(alias="db1-prod", host="10.0.0.5", password="new")
    )

    assert isinstance(result.password_error, PasswordStoreError)
    assert str(result.password_error) == "cannot move"
    assert repo.get_decrypted_password("db1-prod") == "new"


def test_parse_error_names_the_attempted_operation():
    fs = MemoryFileSystem({CONFIG: b"# header\nHost \"broken\n"})
    repo = _repo(fs)

    with pytest.raises(ParseError) as excinfo:
        repo.add_server(Server(alias="new", host="h"))
    assert excinfo.value.line == 2
    assert "adding server 'new'" in str(excinfo.value)
    assert str(excinfo.value).startswith("line 2:")
