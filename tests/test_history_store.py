import csv
import json
import tempfile
import unittest
from pathlib import Path

from fetchq.models.history import (
    HistoryRecord,
    HistoryStatus,
    request_from_record,
    resolve_exit_status,
)
from fetchq.models.request import Mode
from fetchq.storage.history_store import CSV_COLUMNS, HistoryStore


def _record(job_id: str, status: HistoryStatus = HistoryStatus.QUEUED, **fields) -> HistoryRecord:
    return HistoryRecord(
        id=job_id, url=f"https://example.com/{job_id}", status=status, **fields
    )


class HistoryModelTests(unittest.TestCase):
    def test_exit_status_mapping(self) -> None:
        self.assertIs(resolve_exit_status(0, False), HistoryStatus.COMPLETED)
        self.assertIs(resolve_exit_status(1, False), HistoryStatus.FAILED)
        self.assertIs(resolve_exit_status(None, False), HistoryStatus.FAILED)
        self.assertIs(resolve_exit_status(0, True), HistoryStatus.CANCELED)
        self.assertIs(resolve_exit_status(-15, True), HistoryStatus.CANCELED)

    def test_request_from_record_keeps_or_renews_id(self) -> None:
        record = _record("job-1", type=Mode.AUDIO, format="MP3", title="Song")
        resumed = request_from_record(record, keep_id=True)
        self.assertEqual(resumed.id, "job-1")
        self.assertEqual(resumed.audio_format, "mp3")
        self.assertTrue(resumed.is_audio)

        retried = request_from_record(record)
        self.assertNotEqual(retried.id, "job-1")
        self.assertEqual(retried.title, "Song")

    def test_request_from_record_without_url(self) -> None:
        record = HistoryRecord(id="job-1", url="")
        self.assertIsNone(request_from_record(record, keep_id=True))

    def test_serialization_omits_unset_fields(self) -> None:
        data = _record("job-1").to_json_dict()
        self.assertEqual(data["status"], "queued")
        self.assertIn("downloadDate", data)
        self.assertNotIn("completedAt", data)
        self.assertNotIn("error", data)


class HistoryStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.path = self.root / "history.json"
        self.store = HistoryStore(self.path, limit=3)

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def test_append_evicts_oldest_beyond_limit(self) -> None:
        for index in range(5):
            await self.store.append(_record(f"job-{index}"))
        ids = [r.id for r in await self.store.entries()]
        self.assertEqual(ids, ["job-2", "job-3", "job-4"])

    async def test_patch_updates_fields(self) -> None:
        await self.store.append(_record("job-1"))
        applied = await self.store.patch(
            "job-1",
            status=HistoryStatus.COMPLETED,
            filepath="/tmp/out.mp4",
            total_bytes=42,
        )
        self.assertTrue(applied)
        record = await self.store.get("job-1")
        self.assertIs(record.status, HistoryStatus.COMPLETED)
        self.assertEqual(record.filepath, "/tmp/out.mp4")
        self.assertEqual(record.total_bytes, 42)

        raw = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(raw[0]["totalBytes"], 42)

    async def test_patch_ignores_none_values(self) -> None:
        await self.store.append(_record("job-1", title="Keep me"))
        await self.store.patch("job-1", title=None, status=HistoryStatus.IN_PROGRESS)
        record = await self.store.get("job-1")
        self.assertEqual(record.title, "Keep me")
        self.assertIs(record.status, HistoryStatus.IN_PROGRESS)

    async def test_terminal_status_is_absorbing(self) -> None:
        await self.store.append(_record("job-1", HistoryStatus.FAILED, error="boom"))
        self.assertFalse(await self.store.patch("job-1", status=HistoryStatus.QUEUED))
        self.assertFalse(
            await self.store.upsert(_record("job-1", HistoryStatus.IN_PROGRESS))
        )
        record = await self.store.get("job-1")
        self.assertIs(record.status, HistoryStatus.FAILED)
        self.assertEqual(record.error, "boom")

    async def test_in_progress_may_return_to_queued(self) -> None:
        await self.store.append(_record("job-1", HistoryStatus.IN_PROGRESS))
        self.assertTrue(await self.store.patch("job-1", status=HistoryStatus.QUEUED))

    async def test_patch_unknown_id(self) -> None:
        self.assertFalse(await self.store.patch("nope", status=HistoryStatus.FAILED))

    async def test_upsert_appends_then_updates_in_place(self) -> None:
        await self.store.append(_record("job-0"))
        self.assertTrue(await self.store.upsert(_record("job-1")))
        self.assertTrue(await self.store.upsert(_record("job-1", HistoryStatus.IN_PROGRESS)))
        records = await self.store.entries()
        self.assertEqual([r.id for r in records], ["job-0", "job-1"])
        self.assertIs(records[1].status, HistoryStatus.IN_PROGRESS)

    async def test_mark_started_keeps_original_fields(self) -> None:
        await self.store.append(
            _record("a", title="Clip", download_date="2024-01-01T00:00:00+00:00")
        )
        started = await self.store.mark_started(
            _record("a", HistoryStatus.IN_PROGRESS, title="Other")
        )
        self.assertTrue(started)
        record = await self.store.get("a")
        self.assertIs(record.status, HistoryStatus.IN_PROGRESS)
        self.assertEqual(record.title, "Clip")
        self.assertEqual(record.download_date, "2024-01-01T00:00:00+00:00")

    async def test_mark_started_appends_or_refuses(self) -> None:
        self.assertTrue(await self.store.mark_started(_record("new", HistoryStatus.IN_PROGRESS)))
        self.assertIs((await self.store.get("new")).status, HistoryStatus.IN_PROGRESS)

        await self.store.append(_record("done", HistoryStatus.COMPLETED))
        self.assertFalse(
            await self.store.mark_started(_record("done", HistoryStatus.IN_PROGRESS))
        )
        self.assertIs((await self.store.get("done")).status, HistoryStatus.COMPLETED)

    async def test_remove_and_clear(self) -> None:
        await self.store.append(_record("job-1"))
        await self.store.append(_record("job-2"))
        self.assertTrue(await self.store.remove("job-1"))
        self.assertFalse(await self.store.remove("job-1"))
        self.assertEqual([r.id for r in await self.store.entries()], ["job-2"])
        await self.store.clear()
        self.assertEqual(await self.store.entries(), [])

    async def test_replace_applies_limit_and_skips_bad_items(self) -> None:
        raw = [_record(f"job-{i}").to_json_dict() for i in range(4)]
        raw.insert(1, {"url": "https://example.com/no-id"})
        kept = await self.store.replace(raw)
        self.assertEqual(kept, 3)
        self.assertEqual(
            [r.id for r in await self.store.entries()], ["job-1", "job-2", "job-3"]
        )

    async def test_export_csv(self) -> None:
        await self.store.append(
            _record("job-1", HistoryStatus.COMPLETED, title='Say "hi"', filepath="/x.mp4")
        )
        destination = await self.store.export_csv(self.root / "out" / "history.csv")

        with destination.open(encoding="utf-8", newline="") as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0], CSV_COLUMNS)
        row = dict(zip(rows[0], rows[1]))
        self.assertEqual(row["id"], "job-1")
        self.assertEqual(row["title"], 'Say "hi"')
        self.assertEqual(row["status"], "completed")
        self.assertEqual(row["filepath"], "/x.mp4")

    async def test_export_json(self) -> None:
        await self.store.append(_record("job-1"))
        destination = await self.store.export_json(self.root / "history-export.json")
        data = json.loads(destination.read_text(encoding="utf-8"))
        self.assertEqual([item["id"] for item in data], ["job-1"])


if __name__ == "__main__":
    unittest.main()
