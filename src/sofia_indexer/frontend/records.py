"""Records panel for browsing and exporting admitted records."""

from __future__ import annotations

import csv
import json
from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from textual import on
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, DataTable, Static

from sofia_indexer.adapters.report_formatting import format_block_time
from sofia_indexer.core.errors import StorageError
from sofia_indexer.core.models import IndexedRecord
from sofia_indexer.core.ports import RecordStorePort

from .constants import EXPORTS_DIR


class RecordsPanel(Container):
    """Records table with JSON/CSV export."""

    def __init__(self, store: RecordStorePort, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._store = store
        self._records: list[IndexedRecord] = []
        self._table_ready = False

    def compose(self):
        with Vertical(id="records-panel"):
            yield Static("Signed records", id="records-title")
            yield DataTable(id="records-table", cursor_type="row")
            with Horizontal(id="records-actions"):
                yield Button("Export JSON", id="export-json", variant="success")
                yield Button("Export CSV", id="export-csv")
            yield Static("", id="records-output")

    def on_mount(self) -> None:
        table = self.query_one("#records-table", DataTable)
        table.add_column("time", key="timestamp", width=20)
        table.add_column("block", key="block_number", width=10)
        table.add_column("kind", key="kind", width=7)
        table.add_column("term id", key="record_identifier", width=24)
        table.add_column("tx", key="transaction_hash", width=24)
        table.zebra_stripes = True
        table.styles.height = "1fr"
        self.query_one("#records-actions").styles.height = 3
        self._table_ready = True
        self.load_records()

    @on(Button.Pressed, "#export-json")
    def _on_export_json(self) -> None:
        self._export_rows("json")

    @on(Button.Pressed, "#export-csv")
    def _on_export_csv(self) -> None:
        self._export_rows("csv")

    @on(DataTable.RowSelected, "#records-table")
    def _on_row_selected(self, event: DataTable.RowSelected) -> None:
        record = self._find(event.row_key.value)
        if record is None:
            return
        locators = ", ".join(record.matched_locators) or "-"
        names = ", ".join(item.name for item in record.metadata if item.name) or "-"
        self._set_output(f"{record.id}\ncreator {record.creator}\nsigned {locators}\nnames {names}")

    def load_records(self) -> None:
        if not self._table_ready:
            return
        table = self.query_one("#records-table", DataTable)
        table.clear()
        try:
            records = self._store.list()
        except StorageError as exc:
            self._records = []
            self._set_output(f"db error: {exc}")
            return

        # Newest first for display.
        self._records = list(reversed(records))
        for record in self._records:
            table.add_row(
                format_block_time(record.timestamp),
                str(record.block_number),
                record.kind,
                self._clip_text(record.record_identifier),
                self._clip_text(record.transaction_hash),
                key=record.id,
            )
        self._set_output(f"loaded {len(self._records)} records")

    def _find(self, record_id: Optional[str]) -> Optional[IndexedRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def _export_rows(self, fmt: str) -> None:
        if not self._records:
            self._set_output("No records to export.")
            return
        EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        path = EXPORTS_DIR / f"records-{timestamp}.{fmt}"
        rows = [self._row(record) for record in self._records]
        try:
            if fmt == "json":
                path.write_text(json.dumps(rows, indent=2, ensure_ascii=True), encoding="utf-8")
            else:
                fieldnames = list(rows[0].keys())
                with path.open("w", encoding="utf-8", newline="") as handle:
                    writer = csv.DictWriter(handle, fieldnames=fieldnames)
                    writer.writeheader()
                    writer.writerows(rows)
            self._set_output(f"exported {len(rows)} records to {path}")
        except OSError as exc:
            self._set_output(f"export failed: {exc.strerror or exc}")

    def _set_output(self, message: str) -> None:
        self.query_one("#records-output", Static).update(message)

    @staticmethod
    def _row(record: IndexedRecord) -> dict[str, Any]:
        row = asdict(record)
        row["sub_identifiers"] = " ".join(record.sub_identifiers)
        row["matched_locators"] = " ".join(record.matched_locators)
        row["metadata"] = json.dumps([asdict(item) for item in record.metadata], ensure_ascii=True)
        return row

    @staticmethod
    def _clip_text(value: str, limit: int = 22) -> str:
        if len(value) <= limit:
            return value
        return value[: limit - 3] + "..."
