import json
import tempfile
import unittest
from pathlib import Path

from fetchq.exceptions import NotFoundError, StorageError
from fetchq.models.history import HistoryRecord, HistoryStatus
from fetchq.storage.backup import create_backup, restore_backup
from fetchq.storage.history_store import HistoryStore
from fetchq.storage.settings_store import SettingsStore


class BackupTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.data_dir = self.root / "data"
        self.settings = SettingsStore(self.data_dir / "settings.json")
        self.history = HistoryStore(self.data_dir / "history.json")
        await self.settings.load()
        await self.settings.update({"max_concurrent": 5})
        await self.history.append(
            HistoryRecord(id="job-1", url="https://example.com/1", status=HistoryStatus.COMPLETED)
        )

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def test_backup_then_restore(self) -> None:
        destination = await create_backup(self.data_dir, self.root / "Backups")
        self.assertEqual(destination.parent, self.root / "Backups")
        self.assertEqual(
            sorted(p.name for p in destination.iterdir()),
            ["history.json", "settings.json"],
        )

        await self.settings.update({"max_concurrent": 1})
        await self.history.clear()

        restored = await restore_backup(destination, self.settings, self.history)
        self.assertEqual(restored, ["settings.json", "history.json"])
        self.assertEqual(self.settings.current.max_concurrent, 5)
        self.assertEqual([r.id for r in await self.history.entries()], ["job-1"])

    async def test_backup_skips_missing_files(self) -> None:
        await self.history.clear()
        (self.data_dir / "history.json").unlink()
        destination = await create_backup(self.data_dir, self.root / "Backups")
        self.assertEqual([p.name for p in destination.iterdir()], ["settings.json"])

    async def test_restore_from_empty_directory(self) -> None:
        empty = self.root / "empty"
        empty.mkdir()
        with self.assertRaises(NotFoundError) as ctx:
            await restore_backup(empty, self.settings, self.history)
        self.assertEqual(ctx.exception.reason, "no_backup_files")

    async def test_restore_rejects_corrupt_json(self) -> None:
        source = self.root / "broken"
        source.mkdir()
        (source / "history.json").write_text("[{", encoding="utf-8")
        with self.assertRaises(StorageError):
            await restore_backup(source, self.settings, self.history)
        self.assertEqual(len(await self.history.entries()), 1)

    async def test_restore_history_only(self) -> None:
        source = self.root / "partial"
        source.mkdir()
        (source / "history.json").write_text(
            json.dumps([{"id": "job-9", "url": "https://example.com/9", "status": "failed"}]),
            encoding="utf-8",
        )
        restored = await restore_backup(source, self.settings, self.history)
        self.assertEqual(restored, ["history.json"])
        self.assertEqual(self.settings.current.max_concurrent, 5)
        record = await self.history.get("job-9")
        self.assertIs(record.status, HistoryStatus.FAILED)


if __name__ == "__main__":
    unittest.main()
