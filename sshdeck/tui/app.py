from __future__ import annotations

import argparse
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Dict, List, Optional, Sequence, Tuple

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.timer import Timer
from textual.widgets import DataTable, Footer, Header, Input, Static

from sshdeck.config import Config
from sshdeck.errors import SSHDeckError
from sshdeck.models import Server
from sshdeck.repository import ServerRepository
from sshdeck.server_sort import SERVER_SORT_PRESETS, next_preset, sort_servers

LOG = logging.getLogger(__name__)


def _format_time(value) -> str:
    if value is None:
        return "never"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def format_server_row(server: Server) -> Tuple[str, str, str, str, str]:
    pin = "*" if server.is_pinned else ""
    return (
        pin,
        server.alias or "(unnamed)",
        server.host or "?",
        server.user or "-",
        str(server.port),
    )


def format_server_details(server: Optional[Server]) -> str:
    if server is None:
        return "Select a server to see details."

    lines = [
        f"[b]{server.alias}[/b]",
        "",
        f"[b]Host[/b]      {server.host or '-'}",
        f"[b]User[/b]      {server.user or '-'}",
        f"[b]Port[/b]      {server.port}",
        f"[b]Key[/b]       {', '.join(server.identity_files) or 'default'}",
        f"[b]Password[/b]  {'Set (hidden)' if server.has_password else 'Not set'}",
        f"[b]Tags[/b]      {', '.join('#' + tag for tag in server.tags) or '-'}",
        f"[b]Pinned[/b]    {_format_time(server.pinned_at) if server.is_pinned else 'no'}",
        f"[b]Last SSH[/b]  {_format_time(server.last_seen)}",
        f"[b]SSH count[/b] {server.ssh_count}",
    ]
    extra = [alias for alias in server.aliases if alias != server.alias]
    if extra:
        lines.insert(2, f"[b]Aliases[/b]   {' '.join(extra)}")
    return "\n".join(lines)


class HelpScreen(ModalScreen[None]):
    """Modal overlay listing keyboard shortcuts."""

    def compose(self) -> ComposeResult:
        lines = [
            "[b]sshdeck[/b]",
            "",
            "Navigation:",
            "  ↑/↓ or j/k  Move selection",
            "",
            "Actions:",
            "  p            Pin / unpin server",
            "  d            Delete server",
            "  s            Cycle sort order",
            "  r / F5       Reload",
            "  / or Ctrl+F  Focus the filter",
            "  Esc          Return focus to the list",
            "  q or Ctrl+C  Quit",
            "",
            "Press Esc, q, or ? to close this help.",
        ]
        yield Static("\n".join(lines), id="help-panel")

    def on_key(self, event: events.Key) -> None:
        if event.key in {"escape", "q", "?"}:
            event.stop()
            self.dismiss()


class ConfirmScreen(ModalScreen[bool]):
    """Yes/no question answered with y or n."""

    def __init__(self, question: str, **kwargs):
        super().__init__(**kwargs)
        self.question = question

    def compose(self) -> ComposeResult:
        yield Static(f"{self.question}\n\n[b]y[/b] confirm    [b]n[/b] cancel", id="confirm-panel")

    def on_key(self, event: events.Key) -> None:
        if event.key in {"y", "Y"}:
            event.stop()
            self.dismiss(True)
        elif event.key in {"n", "N", "escape", "q"}:
            event.stop()
            self.dismiss(False)


class DetailsPanel(Static):
    """Shows information about the selected server."""

    def show_server(self, server: Optional[Server]) -> None:
        self.update(format_server_details(server))

    def show_empty(self, message: str) -> None:
        self.update(message)


class StatusBar(Static):
    """Single-line status indicator."""

    def set_message(self, message: str, *, error: bool = False) -> None:
        self.set_class(error, "error")
        self.update(message or "")


class SSHDeckApp(App[None]):
    """Textual interface for browsing the servers in the SSH config."""

    TITLE = "sshdeck"
    CSS = """
    Screen {
        layout: vertical;
    }

    HelpScreen, ConfirmScreen {
        align: center middle;
    }

    #body {
        height: 1fr;
        padding: 1 2;
    }

    #list-panel, #details-panel {
        height: 1fr;
    }

    #details-panel {
        border: round $secondary;
        padding: 1;
    }

    #server-table {
        height: 1fr;
    }

    #status {
        height: 3;
        content-align: left middle;
        padding: 0 1;
        background: $boost;
    }

    #status.error {
        background: $error;
        color: $text;
    }

    .panel-title {
        text-style: bold;
        padding-bottom: 1;
    }

    #filter {
        margin-bottom: 1;
    }

    #help-panel, #confirm-panel {
        width: 60%;
        background: $surface;
        border: round $secondary;
        padding: 2;
    }
    """

    BINDINGS = [
        Binding("q", "quit_app", "Quit"),
        Binding("ctrl+c", "quit_app", "Quit", show=False),
        Binding("p", "toggle_pin", "Pin"),
        Binding("d", "delete", "Delete"),
        Binding("s", "cycle_sort", "Sort"),
        Binding("r", "reload", "Reload"),
        Binding("f5", "reload", "Reload", show=False),
        Binding("/", "focus_filter", "Filter"),
        Binding("ctrl+f", "focus_filter", "Filter", show=False),
        Binding("escape", "focus_list", "Focus list", show=False),
        Binding("?", "show_help", "Help"),
    ]

    def __init__(self, repository: ServerRepository, *, config: Optional[Config] = None, **kwargs):
        super().__init__(**kwargs)
        self.repository = repository
        self.config = config
        sort_id = config.get_setting("ui.sort") if config else None
        self.sort_id = sort_id if sort_id in SERVER_SORT_PRESETS else "default"
        self.servers: List[Server] = []
        self.row_map: Dict[str, Server] = {}
        self.filter_text = ""
        self._selected_alias: Optional[str] = None
        self._status_timer: Optional[Timer] = None

    # --------------------------------------------------------------------- UI
    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="body"):
            with Vertical(id="list-panel"):
                yield Static("Servers", classes="panel-title")
                yield Input(placeholder="Filter by host, user, tag or alias…", id="filter")
                table = DataTable(id="server-table", cursor_type="row", zebra_stripes=True)
                table.add_columns("", "Alias", "Host", "User", "Port")
                yield table
            with Vertical(id="details-panel"):
                yield Static("Details", classes="panel-title")
                yield DetailsPanel(id="details")
        yield Footer()
        yield StatusBar(id="status")

    def on_mount(self) -> None:
        self.status_bar = self.query_one(StatusBar)
        self.details_panel = self.query_one(DetailsPanel)
        self.filter_input = self.query_one("#filter", Input)
        self.server_table = self.query_one("#server-table", DataTable)
        self.server_table.focus()
        self.load_servers()

    # ---------------------------------------------------------------- bindings
    def action_quit_app(self) -> None:
        self.exit()

    def action_reload(self) -> None:
        self.load_servers()

    def action_focus_filter(self) -> None:
        self.filter_input.focus()
        self.filter_input.cursor_position = len(self.filter_input.value)

    def action_focus_list(self) -> None:
        self.server_table.focus()

    def action_show_help(self) -> None:
        self.push_screen(HelpScreen())

    def action_cycle_sort(self) -> None:
        self.sort_id = next_preset(self.sort_id)
        if self.config is not None:
            self.config.set_setting("ui.sort", self.sort_id)
        self.load_servers()
        self.set_status(f"Sorted by: {SERVER_SORT_PRESETS[self.sort_id].title}")

    def action_toggle_pin(self) -> None:
        server = self.get_selected_server()
        if server is None:
            self.set_status("No server selected", error=True)
            return
        try:
            self.repository.set_pinned(server.alias, not server.is_pinned)
        except SSHDeckError as exc:
            LOG.exception("Failed to update pin state")
            self.set_status(f"Failed to update pin: {exc}", error=True, persist=True)
            return
        self.load_servers()
        self.set_status(f"{'Unpinned' if server.is_pinned else 'Pinned'} {server.alias}")

    def action_delete(self) -> None:
        server = self.get_selected_server()
        if server is None:
            self.set_status("No server selected", error=True)
            return

        def _on_answer(confirmed: Optional[bool]) -> None:
            if confirmed:
                self._delete_server(server)
            else:
                self.set_status("Delete cancelled")

        self.push_screen(ConfirmScreen(f"Delete server '{server.alias}' from the SSH config?"), _on_answer)

    def _delete_server(self, server: Server) -> None:
        try:
            result = self.repository.delete_server(server)
        except SSHDeckError as exc:
            LOG.exception("Failed to delete server")
            self.set_status(f"Failed to delete {server.alias}: {exc}", error=True, persist=True)
            return
        self._selected_alias = None
        self.load_servers()
        if result.ok:
            self.set_status(f"Deleted {server.alias}")
        else:
            self.set_status(f"Deleted {server.alias}; some metadata could not be removed", error=True)

    # ----------------------------------------------------------------- events
    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input is self.filter_input:
            self.filter_text = event.value
            self.load_servers()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input is self.filter_input:
            self.server_table.focus()

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.data_table is not self.server_table or event.row_key is None:
            return
        server = self.row_map.get(event.row_key.value)
        if server:
            self._selected_alias = server.alias
            self.details_panel.show_server(server)

    # ----------------------------------------------------------------- data ops
    def load_servers(self) -> None:
        try:
            servers = self.repository.list_servers(self.filter_text.strip())
        except SSHDeckError as exc:
            LOG.exception("Failed to load servers")
            self.set_status(f"Unable to load servers: {exc}", error=True, persist=True)
            return
        self.servers = sort_servers(servers, self.sort_id)
        self._populate_table()

    def _populate_table(self) -> None:
        table = self.server_table
        table.clear(columns=False)
        self.row_map.clear()

        selected_index = 0
        for idx, server in enumerate(self.servers):
            table.add_row(*format_server_row(server), key=server.alias)
            self.row_map[server.alias] = server
            if server.alias == self._selected_alias:
                selected_index = idx

        if self.servers:
            table.move_cursor(row=selected_index)
            server = self.servers[selected_index]
            self._selected_alias = server.alias
            self.details_panel.show_server(server)
        else:
            message = "No matches for current filter" if self.filter_text else "No servers in SSH config"
            self.details_panel.show_empty(message)
            self._selected_alias = None

    def get_selected_server(self) -> Optional[Server]:
        if not self._selected_alias:
            return None
        return self.row_map.get(self._selected_alias)

    # ----------------------------------------------------------------- status
    def set_status(self, message: str, *, error: bool = False, persist: bool = False) -> None:
        if not hasattr(self, "status_bar"):
            return
        if self._status_timer:
            self._status_timer.stop()
            self._status_timer = None
        self.status_bar.set_message(message, error=error)
        if not persist:
            self._status_timer = self.set_timer(6, self._clear_status, name="status-clear")

    def _clear_status(self) -> None:
        self.status_bar.set_message("")
        self._status_timer = None


def parse_args(argv: Optional[Sequence[str]] = None):
    parser = argparse.ArgumentParser(description="sshdeck terminal UI")
    parser.add_argument("--config", help="Path to the sshdeck config.json")
    parser.add_argument("--ssh-config", help="SSH config file to manage (default: ~/.ssh/config)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Python logging level (default: WARNING)",
    )
    parser.add_argument("--log-file", help="Write logs to a rotating file instead of stderr")
    return parser.parse_args(argv)


def setup_logging(level_name: str, log_file: Optional[str] = None) -> None:
    level = getattr(logging, str(level_name).upper(), logging.WARNING)
    if not log_file:
        logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
        return

    log_file = os.path.abspath(os.path.expanduser(log_file))
    os.makedirs(os.path.dirname(log_file), exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def main(argv: Optional[Sequence[str]] = None):
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    config = Config(args.config)
    repository = ServerRepository.from_config(config, args.ssh_config)

    app = SSHDeckApp(repository, config=config)
    try:
        app.run()
    except KeyboardInterrupt:
        pass
    return 0


__all__ = ["main", "SSHDeckApp", "format_server_details", "format_server_row"]
