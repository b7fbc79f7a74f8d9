"""Main Textual app for browsing the records the indexer admitted."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, Footer, Static

from sofia_indexer.adapters.report_formatting import format_timestamp
from sofia_indexer.adapters.sqlite_storage import SQLiteCheckpoint, SQLiteStorage
from sofia_indexer.core.config import ChainConfig
from sofia_indexer.core.errors import StorageError

from .constants import SOFIA_VIOLET
from .records import RecordsPanel


class RecordsApp(App):
    """Read-only viewer over the indexer database."""

    BINDINGS = [
        ("r", "reload", "Reload"),
        ("q", "quit", "Quit"),
        ("ctrl+c", "quit", "Quit"),
    ]

    CSS = """
    #header {
        height: auto;
        padding: 0 1;
        border-bottom: solid $accent;
    }
    #header-row {
        height: auto;
    }
    #header-left {
        width: 1fr;
    }
    #header-right {
        width: auto;
        align-horizontal: right;
    }
    .subtle {
        color: $text-muted;
    }
    .status-error {
        color: $error;
    }
    #records-output {
        height: auto;
        padding: 0 1;
    }
    """

    def __init__(self, db_path: str, chain: ChainConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._chain = chain
        self._storage = SQLiteStorage(db_path)
        self._checkpoint = SQLiteCheckpoint(self._storage)

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            with Horizontal(id="header-row"):
                with Vertical(id="header-left"):
                    yield Static(self._title_text(), id="title")
                    yield Static(
                        f"{self._chain.name} ({self._chain.chain_id})", classes="subtle"
                    )
                    yield Static(self._chain.contract_address, classes="subtle")
                with Vertical(id="header-right"):
                    yield Static(f"db: {self._storage.db_path}", classes="subtle")
                    yield Static("", id="header-status")
                    yield Button("Reload", id="reload-btn")
        yield RecordsPanel(self._storage, id="records")
        yield Footer()

    def on_mount(self) -> None:
        self._refresh_header()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "reload-btn":
            self.action_reload()

    def action_reload(self) -> None:
        self._refresh_header()
        self.query_one(RecordsPanel).load_records()

    def _refresh_header(self) -> None:
        status = self.query_one("#header-status", Static)
        status.remove_class("status-error")
        try:
            checkpoint = self._checkpoint.get()
            updated = self._checkpoint.last_updated_at()
            count = self._storage.count()
        except StorageError as exc:
            status.update(f"db: error ({exc})")
            status.add_class("status-error")
            return
        block = "uninitialized" if checkpoint is None else str(checkpoint)
        status.update(f"checkpoint {block} | {count} records | {format_timestamp(updated)}")

    @staticmethod
    def _title_text() -> Text:
        return Text.assemble(
            ("SOFIA", SOFIA_VIOLET),
            (" INDEXER > Records", "bold"),
        )
