import unittest
from datetime import datetime

from bucketfs.app import (
    BucketBrowser,
    ConfirmDeleteDialog,
    delete_summary_lines,
    format_size,
    format_time,
    kind_from_name,
)
from bucketfs.config import BrowserConfig
from bucketfs.listing import ENTRY_FOLDER, Entry
from bucketfs.state import BrowserState
from fake_store import FakeStore


class TestAppHelpers(unittest.TestCase):
    def test_format_size(self) -> None:
        self.assertEqual(format_size(0), "0 B")
        self.assertEqual(format_size(512), "512 B")
        self.assertEqual(format_size(1024), "1.0 KB")
        self.assertEqual(format_size(1536), "1.5 KB")

    def test_format_time(self) -> None:
        self.assertEqual(format_time(None), "")
        self.assertEqual(format_time(datetime(2024, 3, 5, 7, 9)), "2024-03-05 07:09")

    def test_kind_from_name(self) -> None:
        self.assertEqual(kind_from_name("table.csv"), "csv")
        self.assertEqual(kind_from_name("dump.json.gz"), "json")
        self.assertEqual(kind_from_name("Makefile"), "file")

    def test_delete_summary_lines(self) -> None:
        entries = [
            Entry(key="photos", type=ENTRY_FOLDER),
            Entry(key="a.txt"),
            Entry(key="b.txt"),
            Entry(key="c.txt"),
        ]
        lines = delete_summary_lines(entries, "docs/")
        self.assertEqual(lines[0], "Folders: 1 (with everything inside)")
        self.assertEqual(lines[1], "Files: 3")
        self.assertEqual(lines[2], "  docs/photos/")
        self.assertEqual(lines[-1], "  ... and 1 more")


class TestBrowserMount(unittest.IsolatedAsyncioTestCase):
    def _app(self, store: FakeStore) -> BucketBrowser:
        config = BrowserConfig(bucket="test-bucket")
        return BucketBrowser(config, state=BrowserState(store))

    async def _settle(self, app: BucketBrowser, pilot) -> None:
        await pilot.pause()
        await app.workers.wait_for_complete()
        await pilot.pause()

    async def test_mount_lists_root(self) -> None:
        store = FakeStore(["docs/a.txt", "readme.md"])
        app = self._app(store)
        async with app.run_test() as pilot:
            await self._settle(app, pilot)
            self.assertEqual(app.listing.row_count, 2)
            self.assertEqual([entry.key for entry in app._rows], ["docs", "readme.md"])

    async def test_open_folder_and_go_up(self) -> None:
        store = FakeStore(["docs/a.txt", "readme.md"])
        app = self._app(store)
        async with app.run_test() as pilot:
            await self._settle(app, pilot)
            app.action_open()
            await self._settle(app, pilot)
            self.assertEqual(app.state.path, "docs/")
            self.assertEqual([entry.key for entry in app._rows], ["a.txt"])
            await pilot.press("backspace")
            await self._settle(app, pilot)
            self.assertEqual(app.state.path, "")

    async def test_space_selects_cursor_row(self) -> None:
        store = FakeStore(["a.txt", "b.txt"])
        app = self._app(store)
        async with app.run_test() as pilot:
            await self._settle(app, pilot)
            await pilot.press("space")
            await pilot.pause()
            self.assertEqual(
                [entry.key for entry in app.state.selected_entries], ["a.txt"]
            )
            app.action_clear_selection()
            await pilot.pause()
            self.assertEqual(app.state.selected_entries, [])

    async def test_confirmed_delete_survives_failed_refresh(self) -> None:
        store = FakeStore(["a.txt", "b.txt"])
        app = self._app(store)
        async with app.run_test() as pilot:
            await self._settle(app, pilot)
            await pilot.press("space")
            await pilot.pause()
            app.action_delete()
            await pilot.pause()
            await pilot.pause()
            self.assertIsInstance(app.screen, ConfirmDeleteDialog)
            store.fail_list.add("")
            app.screen.action_confirm()
            await self._settle(app, pilot)
            self.assertTrue(app.is_running)
            self.assertEqual(sorted(store.objects), ["b.txt"])
            self.assertEqual(app.state.marked, [])


if __name__ == "__main__":
    unittest.main()
