import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from typer.testing import CliRunner

from fetchq.cli import app as cli
from fetchq.exceptions import NotFoundError, ValidationError
from fetchq.utils.paths import AppPaths


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.paths = AppPaths(Path(self._tmp.name) / "data")
        self.paths.data_dir.mkdir(parents=True)
        self.paths.settings_file.write_text(
            json.dumps({"notificationsEnabled": False}), encoding="utf-8"
        )
        patcher = mock.patch.object(cli, "PATHS", self.paths)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.runner = CliRunner()

    def invoke(self, *args: str):
        return self.runner.invoke(cli.app, list(args))

    def _read(self, path: Path):
        return json.loads(path.read_text(encoding="utf-8"))

    def test_version(self) -> None:
        result = self.invoke("--version")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("fetchq", result.output)

    def test_settings_set_and_show(self) -> None:
        self.assertEqual(self.invoke("settings", "set", "max_concurrent", "5").exit_code, 0)
        self.assertEqual(
            self.invoke("settings", "set", "subtitles.languages", "en,fr").exit_code, 0
        )
        persisted = self._read(self.paths.settings_file)
        self.assertEqual(persisted["maxConcurrent"], 5)
        self.assertEqual(persisted["subtitles"]["languages"], "en,fr")

        result = self.invoke("settings", "show")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("max_concurrent = 5", result.output)

    def test_unknown_setting(self) -> None:
        result = self.invoke("settings", "set", "colour", "blue")
        self.assertIsInstance(result.exception, ValidationError)
        self.assertEqual(result.exception.reason, "unknown_setting")

    def test_queue_only_download_then_edit_queue(self) -> None:
        result = self.invoke(
            "download", "--queue-only", "--audio", "https://example.com/a", "https://example.com/b"
        )
        self.assertEqual(result.exit_code, 0, result.output)

        queued = self._read(self.paths.queue_file)
        self.assertEqual(len(queued), 2)
        self.assertEqual({item["mode"] for item in queued}, {"audio"})
        ids = [item["id"] for item in queued]
        self.assertEqual(self.invoke("queue", "list").exit_code, 0)

        self.assertEqual(self.invoke("queue", "move", ids[1], "0").exit_code, 0)
        self.assertEqual([i["id"] for i in self._read(self.paths.queue_file)], [ids[1], ids[0]])

        self.assertEqual(self.invoke("queue", "remove", ids[0]).exit_code, 0)
        self.assertEqual(self.invoke("queue", "clear", "--force").exit_code, 0)
        self.assertEqual(self._read(self.paths.queue_file), [])

        statuses = {r["id"]: r["status"] for r in self._read(self.paths.history_file)}
        self.assertEqual(statuses, {ids[0]: "canceled", ids[1]: "canceled"})

    def test_queue_only_rejects_bad_url(self) -> None:
        result = self.invoke("download", "--queue-only", "ftp://example.com/a")
        self.assertIsInstance(result.exception, ValidationError)
        self.assertEqual(result.exception.reason, "invalid_url")

    def test_history_commands(self) -> None:
        self.paths.history_file.write_text(
            json.dumps(
                [
                    {"id": "job-1", "url": "https://example.com/1", "status": "completed"},
                    {"id": "job-2", "url": "https://example.com/2", "status": "failed", "error": "boom"},
                ]
            ),
            encoding="utf-8",
        )
        self.assertEqual(self.invoke("history", "list").exit_code, 0)

        export = Path(self._tmp.name) / "export.csv"
        self.assertEqual(self.invoke("history", "export", str(export)).exit_code, 0)
        self.assertIn("job-2", export.read_text(encoding="utf-8"))

        self.assertEqual(self.invoke("history", "remove", "job-1").exit_code, 0)
        self.assertEqual([r["id"] for r in self._read(self.paths.history_file)], ["job-2"])

        result = self.invoke("history", "remove", "job-1")
        self.assertIsInstance(result.exception, NotFoundError)

        self.assertEqual(self.invoke("history", "clear", "--force").exit_code, 0)
        self.assertEqual(self._read(self.paths.history_file), [])

    def test_backup_and_restore(self) -> None:
        self.assertEqual(self.invoke("settings", "set", "max_concurrent", "4").exit_code, 0)
        backups = Path(self._tmp.name) / "backups"
        self.assertEqual(self.invoke("backup", "--dest", str(backups)).exit_code, 0)
        (snapshot,) = list(backups.iterdir())

        self.assertEqual(self.invoke("settings", "set", "max_concurrent", "1").exit_code, 0)
        self.assertEqual(self.invoke("restore", str(snapshot)).exit_code, 0)
        self.assertEqual(self._read(self.paths.settings_file)["maxConcurrent"], 4)

    def test_settings_and_restore_leave_queued_work_alone(self) -> None:
        self.paths.settings_file.write_text(
            json.dumps(
                {
                    "notificationsEnabled": False,
                    "pauseNewJobs": True,
                    "useSystemBinaries": False,
                }
            ),
            encoding="utf-8",
        )
        self.assertEqual(
            self.invoke("download", "--queue-only", "https://example.com/a").exit_code, 0
        )
        (job_id,) = [item["id"] for item in self._read(self.paths.queue_file)]

        def assert_still_queued() -> None:
            self.assertEqual([i["id"] for i in self._read(self.paths.queue_file)], [job_id])
            (record,) = self._read(self.paths.history_file)
            self.assertEqual(record["status"], "queued")

        self.assertEqual(self.invoke("settings", "set", "pause_new_jobs", "false").exit_code, 0)
        assert_still_queued()

        backups = Path(self._tmp.name) / "backups"
        self.assertEqual(self.invoke("backup", "--dest", str(backups)).exit_code, 0)
        (snapshot,) = list(backups.iterdir())
        self.assertEqual(self.invoke("restore", str(snapshot)).exit_code, 0)
        assert_still_queued()

        self.assertEqual(self.invoke("queue", "move", job_id, "0").exit_code, 0)
        assert_still_queued()

    def test_diagnose_reports_missing_worker(self) -> None:
        self.invoke("settings", "set", "use_system_binaries", "false")
        result = self.invoke("diagnose")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("yt-dlp not found", result.output)
        self.assertIn("Binaries directory", result.output)

    def test_status_with_empty_state(self) -> None:
        result = self.invoke("status")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Running", result.output)


if __name__ == "__main__":
    unittest.main()
