from __future__ import annotations

import argparse
import locale
import logging
import sys
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Optional

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Static

from .config import BrowserConfig, load_config
from .listing import Entry
from .sorting import ORDER_ASC, ORDER_DESC, SORT_DATE, SORT_NAME, SORT_SIZE
from .state import BrowserState

logger = logging.getLogger(__name__)

ONE_MB = 1024**2
HUNDRED_MB = 100 * ONE_MB
ONE_GB = 1024**3
TEN_GB = 10 * ONE_GB


class PromptDialog(ModalScreen[Optional[str]]):
    BINDINGS = [
        ("escape", "cancel", "Cancel"),
    ]
    CSS = """
    PromptDialog {
        align: center middle;
    }

    #prompt-dialog {
        width: 60;
        max-width: 80;
        min-width: 40;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $panel;
        color: $text;
    }

    #prompt-actions {
        width: 100%;
        align: center middle;
        margin-top: 1;
        height: auto;
    }

    #prompt-ok {
        margin-left: 2;
    }
    """

    def __init__(self, label: str, value: str = "", action: str = "OK") -> None:
        super().__init__()
        self._label = label
        self._value = value
        self._action = action

    def compose(self) -> ComposeResult:
        with Vertical(id="prompt-dialog"):
            yield Static(self._label)
            yield Input(value=self._value, id="prompt-value")
            with Horizontal(id="prompt-actions"):
                yield Button("Cancel", id="prompt-cancel", compact=True)
                yield Button(self._action, id="prompt-ok", compact=True)

    def on_mount(self) -> None:
        self.query_one("#prompt-value", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "prompt-cancel":
            self.dismiss(None)
        elif event.button.id == "prompt-ok":
            self._submit()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "prompt-value":
            return
        self._submit()

    def _submit(self) -> None:
        value = self.query_one("#prompt-value", Input).value.strip()
        if not value:
            return
        self.dismiss(value)

    def action_cancel(self) -> None:
        self.dismiss(None)


class ConfirmDeleteDialog(ModalScreen[bool]):
    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("enter", "confirm", "Delete"),
    ]
    CSS = """
    ConfirmDeleteDialog {
        align: center middle;
    }

    #confirm-dialog {
        width: 60;
        max-width: 80;
        height: auto;
        padding: 1 2;
        border: round $error;
        background: $panel;
        color: $text;
    }

    #confirm-info {
        width: 100%;
        height: auto;
        margin-top: 1;
        padding: 0 1;
        border: round $panel;
        background: $surface;
        color: $text-muted;
    }

    #confirm-actions {
        width: 100%;
        align: center middle;
        margin-top: 1;
        height: auto;
    }

    #confirm-ok {
        margin-left: 2;
    }
    """

    def __init__(self, lines: list[str]) -> None:
        super().__init__()
        self._lines = lines

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm-dialog"):
            yield Static("Delete permanently?")
            yield Static("\n".join(self._lines), id="confirm-info", markup=False)
            with Horizontal(id="confirm-actions"):
                yield Button("Cancel", id="confirm-cancel", compact=True)
                yield Button("Delete", id="confirm-ok", variant="error", compact=True)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "confirm-ok")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)


def format_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    value = float(size)
    for unit in units:
        if value < 1024 or unit == units[-1]:
            if unit == "B":
                return f"{int(value)} {unit}"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} PB"


def size_style(size: int) -> str:
    if size < ONE_MB:
        return "green"
    if size < HUNDRED_MB:
        return "#ffd700"
    if size < ONE_GB:
        return "#ff8c00"
    if size < TEN_GB:
        return "red"
    return "bold red"


def format_time(value: Optional[datetime]) -> str:
    if not value:
        return ""
    return value.strftime("%Y-%m-%d %H:%M")


def kind_from_name(name: str) -> str:
    suffixes = PurePosixPath(name).suffixes
    if suffixes and suffixes[-1].lower() == ".gz":
        suffixes = suffixes[:-1]
    if not suffixes:
        return "file"
    ext = suffixes[-1].lstrip(".").lower()
    return ext or "file"


def entry_marker(entry: Entry, state: BrowserState) -> Text:
    if entry in state.pending:
        return Text("✗", style="bold red")
    if state.selection.is_selected(entry, state.entries):
        return Text("●", style="bold #2f80ed")
    return Text("")


def entry_cells(entry: Entry, state: BrowserState) -> tuple:
    if entry.is_folder:
        return (
            entry_marker(entry, state),
            Text(f"📁 {entry.key}", style="bold"),
            Text("dir"),
            Text(""),
            Text(""),
        )
    size = entry.size or 0
    return (
        entry_marker(entry, state),
        Text(entry.key),
        Text(kind_from_name(entry.key)),
        Text(format_size(size), style=size_style(size), justify="right"),
        Text(format_time(entry.last_modified)),
    )


def delete_summary_lines(entries: list[Entry], path: str) -> list[str]:
    folders = [entry for entry in entries if entry.is_folder]
    files = [entry for entry in entries if not entry.is_folder]
    lines = [f"Folders: {len(folders)} (with everything inside)", f"Files: {len(files)}"]
    preview_count = min(3, len(entries))
    for entry in entries[:preview_count]:
        suffix = "/" if entry.is_folder else ""
        lines.append(f"  {path}{entry.key}{suffix}")
    if len(entries) > preview_count:
        lines.append(f"  ... and {len(entries) - preview_count} more")
    return lines


class BucketBrowser(App):
    CSS = """
    #path-bar {
        height: 3;
        padding: 0 1;
        border: round $panel;
        background: $surface;
        color: $text;
    }

    #path-bucket {
        width: auto;
        color: $text-muted;
    }

    #path-value {
        width: 1fr;
    }

    #listing {
        height: 1fr;
        border: round $panel;
        scrollbar-gutter: stable;
    }

    #status {
        height: 1;
        padding: 0 1;
        background: $surface;
        color: $text-muted;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("enter", "open", "Open"),
        ("backspace", "up", "Up"),
        ("space", "select", "Select"),
        ("s", "extend", "Extend"),
        ("escape", "clear_selection", "Clear"),
        ("u", "upload", "Upload"),
        ("n", "new_folder", "New folder"),
        ("d", "delete", "Delete"),
    ]

    def __init__(
        self, config: BrowserConfig, state: Optional[BrowserState] = None
    ) -> None:
        super().__init__()
        self.config = config
        self.state = state or BrowserState.from_config(config)
        self._rows: list[Entry] = []
        self._col_name = None
        self._col_size = None
        self._col_modified = None
        self._unsubscribe = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="path-bar"):
            yield Static(f"{self.config.bucket}:/", id="path-bucket")
            yield Static("", id="path-value", markup=False)
        yield DataTable(id="listing")
        yield Static("", id="status", markup=False)
        yield Footer()

    async def on_mount(self) -> None:
        self.listing = self.query_one("#listing", DataTable)
        self.path_value = self.query_one("#path-value", Static)
        self.status_line = self.query_one("#status", Static)
        self.listing.add_column("", width=1)
        (
            self._col_name,
            _col_kind,
            self._col_size,
            self._col_modified,
        ) = self.listing.add_columns("Name", "Kind", "Size", "Modified")
        self.listing.cursor_type = "row"
        self.listing.zebra_stripes = True
        self._unsubscribe = self.state.subscribe(self._on_state_changed)
        if self.config.refresh_interval > 0:
            self.set_interval(self.config.refresh_interval, self._auto_refresh)
        self.set_focus(self.listing)
        self.run_worker(self._command(self.state.navigate(self.state.root)))

    def on_unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self.state.close()

    async def _command(self, operation) -> None:
        try:
            await operation
        except Exception as exc:
            logger.warning("command failed: %s", exc)
            self.notify(f"{exc}", severity="error")

    def _on_state_changed(self, state: BrowserState) -> None:
        if not hasattr(self, "status_line"):
            return
        self.path_value.update(state.path or "")
        self._render_rows()
        self._render_status()

    def _render_rows(self) -> None:
        current = self._entry_for_cursor()
        self.listing.clear()
        self._rows = list(self.state.entries)
        for entry in self._rows:
            self.listing.add_row(*entry_cells(entry, self.state), key=entry.key)
        if current is None:
            return
        for index, entry in enumerate(self._rows):
            if entry.key == current.key:
                self.listing.move_cursor(row=index, animate=False)
                return

    def _render_status(self) -> None:
        parts: list[str] = []
        selected = self.state.selected_entries
        if selected:
            parts.append(f"{len(selected)} selected")
        if self.state.marked:
            parts.append(f"{len(self.state.marked)} marked for deletion")
        for record in self.state.upload_records:
            name = record.key.rsplit("/", 1)[-1]
            if record.failed:
                parts.append(f"{name} failed")
            else:
                parts.append(f"{name} {record.progress}%")
        self.status_line.update("  |  ".join(parts))

    def _entry_for_cursor(self) -> Optional[Entry]:
        row = self.listing.cursor_row
        if row is None or row < 0 or row >= len(self._rows):
            return None
        return self._rows[row]

    async def _auto_refresh(self) -> None:
        if self.state.prevent_refresh or self.state.upload_records:
            return
        await self._command(self.state.refresh())

    def action_refresh(self) -> None:
        self.run_worker(self._command(self.state.refresh()))

    def action_open(self) -> None:
        entry = self._entry_for_cursor()
        if entry is None or not entry.is_folder:
            return
        target = f"{self.state.path}{entry.key}/"
        self.run_worker(
            self._command(self.state.navigate(target)), group="navigate", exclusive=True
        )

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        if event.data_table is not self.listing:
            return
        self.action_open()

    def action_up(self) -> None:
        self.run_worker(
            self._command(self.state.navigate_up()), group="navigate", exclusive=True
        )

    def action_select(self) -> None:
        entry = self._entry_for_cursor()
        if entry is not None:
            self.state.select_entry(entry)

    def action_extend(self) -> None:
        entry = self._entry_for_cursor()
        if entry is not None:
            self.state.extend_selection(entry)

    def action_clear_selection(self) -> None:
        self.state.clear_selection()

    def on_data_table_header_selected(self, event: DataTable.HeaderSelected) -> None:
        sort_map = {
            self._col_name: SORT_NAME,
            self._col_size: SORT_SIZE,
            self._col_modified: SORT_DATE,
        }
        field = sort_map.get(event.column_key)
        if not field:
            return
        order = ORDER_ASC
        if self.state.sort_field == field and self.state.sort_order == ORDER_ASC:
            order = ORDER_DESC
        self.state.sort_by(field, order)

    def action_upload(self) -> None:
        self.run_worker(self._upload_flow())

    async def _upload_flow(self) -> None:
        value = await self.push_screen_wait(
            PromptDialog(
                "Upload local files (comma-separated paths):",
                value=str(Path.cwd()) + "/",
                action="Upload",
            )
        )
        if not value:
            return
        paths = [part.strip() for part in value.split(",") if part.strip()]
        missing = [path for path in paths if not Path(path).expanduser().is_file()]
        if missing:
            self.notify(f"Not a file: {', '.join(missing)}", severity="warning")
            return
        self.notify(f"Uploading {len(paths)} file(s)...", severity="information")
        try:
            failures = await self.state.upload(paths)
        except Exception as exc:
            logger.warning("upload failed: %s", exc)
            self.notify(f"{exc}", severity="error")
            return
        if failures:
            names = ", ".join(source.name for source, _ in failures)
            self.notify(f"Upload failed: {names}", severity="error")
        else:
            self.notify("Upload finished", severity="information")

    def action_new_folder(self) -> None:
        self.run_worker(self._new_folder_flow())

    async def _new_folder_flow(self) -> None:
        name = await self.push_screen_wait(PromptDialog("Folder name:", action="Create"))
        if not name:
            return
        await self._command(self.state.create_folder(name))

    def action_delete(self) -> None:
        self.run_worker(self._delete_flow())

    async def _delete_flow(self) -> None:
        targets = self.state.mark_selected()
        if not targets:
            entry = self._entry_for_cursor()
            if entry is None:
                self.notify("Select a file or folder to delete.", severity="warning")
                return
            targets = [entry]
            self.state.mark_for_deletion(targets)
        confirmed = await self.push_screen_wait(
            ConfirmDeleteDialog(delete_summary_lines(self.state.marked, self.state.path))
        )
        if not confirmed:
            self.state.cancel_all_marked()
            return
        self.notify("Deleting...", severity="information")
        try:
            failures = await self.state.delete_marked()
        except Exception as exc:
            logger.warning("delete failed: %s", exc)
            self.notify(f"{exc}", severity="error")
            return
        if failures:
            self.notify(
                f"{len(failures)} item(s) could not be deleted", severity="error"
            )
        else:
            self.notify("Deleted", severity="information")


def _configure_logging(log_file: Optional[str], verbose: bool) -> None:
    if not log_file:
        logging.getLogger().addHandler(logging.NullHandler())
        return
    logging.basicConfig(
        filename=log_file,
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Browse an object storage bucket")
    parser.add_argument("--bucket", help="Bucket to open")
    parser.add_argument("--endpoint", help="S3-compatible endpoint URL")
    parser.add_argument(
        "--root",
        dest="browser_root",
        help="Top of the navigable hierarchy inside the bucket",
    )
    parser.add_argument("--access-key", help="Access key id")
    parser.add_argument("--secret-key", help="Secret access key")
    parser.add_argument("--region", help="Region override for the S3 client")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--log-file", help="Write logs to this file")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug messages"
    )
    return parser


def _run_browser(config: BrowserConfig) -> int:
    app = BucketBrowser(config)
    app.run()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_file, args.verbose)
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error:
        pass
    overrides = {
        "bucket": args.bucket,
        "endpoint": args.endpoint,
        "browser_root": args.browser_root,
        "access_key": args.access_key,
        "secret_key": args.secret_key,
        "region": args.region,
    }
    config_path = Path(args.config).expanduser() if args.config else None
    config = load_config(config_path, overrides=overrides)
    if not config.bucket:
        parser.print_usage(sys.stderr)
        print("error: no bucket configured (use --bucket or BUCKETFS_BUCKET)", file=sys.stderr)
        return 2
    return _run_browser(config)


if __name__ == "__main__":
    sys.exit(main())
