import unittest

from bucketfs.deletes import (
    DeleteOrchestrator,
    FolderDeleteError,
    PendingDeletions,
    drain,
)
from bucketfs.listing import ENTRY_FOLDER, PLACEHOLDER_NAME, Entry, ListingCache
from fake_store import FakeStore

TREE = [
    "keep.txt",
    "photos/",
    f"photos/{PLACEHOLDER_NAME}",
    "photos/a.jpg",
    "photos/b.jpg",
    "photos/c.jpg",
    "photos/d.jpg",
    "photos/e.jpg",
    "photos/f.jpg",
    "photos/2023/x.jpg",
    "photos/2023/raw/y.cr2",
    "photos/2023/raw/z.cr2",
    "photosphere.txt",
]


class _CountingPending(PendingDeletions):
    def __init__(self) -> None:
        super().__init__()
        self.discarded: list[str] = []

    def discard(self, entry: Entry) -> bool:
        self.discarded.append(entry.key)
        return super().discard(entry)


class TestDrain(unittest.IsolatedAsyncioTestCase):
    async def test_each_item_handled_once_and_failures_collected(self) -> None:
        queue = list(range(10))
        seen: list[int] = []

        async def worker(item: int) -> None:
            seen.append(item)
            if item == 4:
                raise RuntimeError("boom")

        failures = await drain(queue, worker, concurrency=3)
        self.assertEqual(sorted(seen), list(range(10)))
        self.assertEqual(queue, [])
        self.assertEqual([item for item, _ in failures], [4])


class TestDeleteOrchestrator(unittest.IsolatedAsyncioTestCase):
    def _orchestrator(self, store: FakeStore):
        self.refreshes = 0
        self.pending = _CountingPending()
        self.cache = ListingCache()

        async def refresh() -> None:
            self.refreshes += 1

        return DeleteOrchestrator(store, self.cache, self.pending, refresh)

    async def test_delete_folder_removes_whole_subtree(self) -> None:
        store = FakeStore(TREE)
        orchestrator = self._orchestrator(store)
        folder = Entry(key="photos", type=ENTRY_FOLDER)
        self.pending.add([folder])
        self.cache.store("photos/2023/", [])
        self.cache.store("", [])

        await orchestrator.delete_folder(folder, "")

        self.assertEqual(store.keys_under("photos/"), [])
        self.assertEqual(sorted(store.objects), ["keep.txt", "photosphere.txt"])
        self.assertEqual(self.pending.discarded, ["photos"])
        self.assertNotIn(folder, self.pending)
        self.assertEqual(self.refreshes, 1)
        self.assertEqual(len(self.cache), 0)

    async def test_delete_folder_bounds_concurrency(self) -> None:
        store = FakeStore(TREE)
        orchestrator = self._orchestrator(store)
        await orchestrator.delete_folder(Entry(key="photos", type=ENTRY_FOLDER), "")
        self.assertEqual(store.max_active_deletes, 3)

    async def test_nested_base_path(self) -> None:
        store = FakeStore(["a/b/one.txt", "a/b/c/two.txt", "a/keep.txt"])
        orchestrator = self._orchestrator(store)
        await orchestrator.delete_folder(Entry(key="b", type=ENTRY_FOLDER), "a/")
        self.assertEqual(sorted(store.objects), ["a/keep.txt"])

    async def test_single_delete_refreshes_and_unmarks(self) -> None:
        store = FakeStore(["docs/a.txt", "docs/b.txt"])
        orchestrator = self._orchestrator(store)
        entry = Entry(key="a.txt", size=0)
        self.pending.add([entry])
        await orchestrator.delete(entry, "docs/")
        self.assertEqual(sorted(store.objects), ["docs/b.txt"])
        self.assertEqual(self.refreshes, 1)
        self.assertNotIn(entry, self.pending)

    async def test_single_delete_unmarks_when_refresh_fails(self) -> None:
        store = FakeStore(["a.txt", "b.txt"])
        orchestrator = self._orchestrator(store)

        async def refresh() -> None:
            raise RuntimeError("list failed")

        orchestrator._refresh = refresh
        entry = Entry(key="a.txt", size=0)
        self.pending.add([entry])
        with self.assertRaises(RuntimeError):
            await orchestrator.delete(entry, "")
        self.assertEqual(sorted(store.objects), ["b.txt"])
        self.assertNotIn(entry, self.pending)

    async def test_folder_step_skips_refresh_and_unmark(self) -> None:
        store = FakeStore(["docs/a.txt"])
        orchestrator = self._orchestrator(store)
        await orchestrator.delete(Entry(key="docs/a.txt"), "", folder=True)
        self.assertEqual(store.objects, {})
        self.assertEqual(self.refreshes, 0)
        self.assertEqual(self.pending.discarded, [])

    async def test_failed_object_keeps_folder_pending(self) -> None:
        store = FakeStore(TREE)
        store.fail_delete.add("photos/c.jpg")
        orchestrator = self._orchestrator(store)
        folder = Entry(key="photos", type=ENTRY_FOLDER)
        self.pending.add([folder])

        with self.assertRaises(FolderDeleteError) as ctx:
            await orchestrator.delete_folder(folder, "")

        self.assertEqual(ctx.exception.keys, ["photos/c.jpg"])
        self.assertIn("photos/c.jpg", store.objects)
        self.assertNotIn("photos/a.jpg", store.objects)
        self.assertIn("photos/2023/x.jpg", store.objects)
        self.assertIn(folder, self.pending)
        self.assertEqual(self.refreshes, 1)

    async def test_delete_many_isolates_failures(self) -> None:
        store = FakeStore(TREE)
        store.fail_delete.add("keep.txt")
        orchestrator = self._orchestrator(store)
        targets = [
            Entry(key="keep.txt"),
            Entry(key="photos", type=ENTRY_FOLDER),
            Entry(key="photosphere.txt"),
        ]
        self.pending.add(targets)
        failures = await orchestrator.delete_many(targets, "")
        self.assertEqual([entry.key for entry, _ in failures], ["keep.txt"])
        self.assertEqual(sorted(store.objects), ["keep.txt"])
        self.assertEqual([entry.key for entry in self.pending], ["keep.txt"])


class TestPendingDeletions(unittest.TestCase):
    def test_keyed_by_entry_key(self) -> None:
        pending = PendingDeletions()
        pending.add([Entry(key="a"), Entry(key="a"), Entry(key="b")])
        self.assertEqual(len(pending), 2)
        self.assertIn("a", pending)
        self.assertTrue(pending.discard(Entry(key="a")))
        self.assertFalse(pending.discard(Entry(key="a")))
        pending.clear()
        self.assertEqual(list(pending), [])


if __name__ == "__main__":
    unittest.main()
