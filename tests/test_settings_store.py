import json
import tempfile
import unittest
from pathlib import Path

from fetchq.exceptions import ConfigurationError
from fetchq.models.settings import Settings, merge_with_defaults, normalize_keys
from fetchq.storage.settings_store import SettingsStore


class SettingsModelTests(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = Settings()
        self.assertEqual(settings.max_concurrent, 3)
        self.assertFalse(settings.pause_new_jobs)
        self.assertTrue(settings.resume_queued_on_startup)
        self.assertEqual(settings.filename_template, "%(title)s.%(ext)s")

    def test_normalize_keys_accepts_both_spellings_and_drops_unknown(self) -> None:
        normalized = normalize_keys(
            {"maxConcurrent": 5, "pause_new_jobs": True, "bogus": 1}
        )
        self.assertEqual(normalized, {"max_concurrent": 5, "pause_new_jobs": True})

    def test_partial_subtitle_override_keeps_other_fields(self) -> None:
        base = merge_with_defaults({"subtitles": {"enabled": True, "languages": "en"}})
        updated = merge_with_defaults({"subtitles": {"embed": True}}, base=base)
        self.assertTrue(updated.subtitles.enabled)
        self.assertTrue(updated.subtitles.embed)
        self.assertEqual(updated.subtitles.languages, "en")

    def test_playlist_items_whitespace_is_removed(self) -> None:
        settings = merge_with_defaults({"playlistItems": "1-3, 7"})
        self.assertEqual(settings.playlist_items, "1-3,7")

    def test_invalid_values_are_rejected(self) -> None:
        from pydantic import ValidationError

        for overrides in (
            {"max_concurrent": 0},
            {"max_concurrent": 99},
            {"limit_rate_kib": -1},
            {"playlist_items": "1; rm -rf"},
            {"version": 99},
        ):
            with self.subTest(overrides=overrides):
                with self.assertRaises(ValidationError):
                    merge_with_defaults(overrides)


class SettingsStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "settings.json"
        self.store = SettingsStore(self.path)

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    def _read_file(self) -> dict:
        return json.loads(self.path.read_text(encoding="utf-8"))

    async def test_first_load_writes_defaults(self) -> None:
        settings = await self.store.load()
        self.assertEqual(settings, Settings())
        persisted = self._read_file()
        self.assertEqual(set(persisted), Settings.persisted_keys())
        self.assertEqual(persisted["maxConcurrent"], 3)

    async def test_load_migrates_missing_keys_and_keeps_values(self) -> None:
        self.path.write_text(json.dumps({"maxConcurrent": 6}), encoding="utf-8")
        settings = await self.store.load()
        self.assertEqual(settings.max_concurrent, 6)
        persisted = self._read_file()
        self.assertEqual(persisted["maxConcurrent"], 6)
        self.assertIn("pauseNewJobs", persisted)
        self.assertEqual(persisted["version"], 1)

    async def test_load_rejects_invalid_file_values(self) -> None:
        self.path.write_text(json.dumps({"maxConcurrent": -4}), encoding="utf-8")
        with self.assertRaises(ConfigurationError):
            await self.store.load()

    async def test_corrupt_file_falls_back_to_defaults(self) -> None:
        self.path.write_text("{not json", encoding="utf-8")
        settings = await self.store.load()
        self.assertEqual(settings.max_concurrent, 3)

    async def test_update_persists_and_notifies_listeners(self) -> None:
        await self.store.load()
        seen = []

        async def listener(settings: Settings) -> None:
            seen.append(settings.max_concurrent)

        self.store.add_listener(listener)
        self.store.add_listener(lambda settings: seen.append(settings.pause_new_jobs))

        await self.store.update({"maxConcurrent": 4, "pause_new_jobs": True})

        self.assertEqual(self.store.current.max_concurrent, 4)
        self.assertEqual(seen, [4, True])
        self.assertEqual(self._read_file()["maxConcurrent"], 4)

    async def test_invalid_update_changes_nothing(self) -> None:
        await self.store.load()
        with self.assertRaises(ConfigurationError):
            await self.store.update({"max_concurrent": 0})
        self.assertEqual(self.store.current.max_concurrent, 3)
        self.assertEqual(self._read_file()["maxConcurrent"], 3)

    async def test_replace_resets_unspecified_keys(self) -> None:
        await self.store.load()
        await self.store.update({"max_concurrent": 7, "proxy_url": "http://proxy:8080"})
        settings = await self.store.replace({"maxConcurrent": 2})
        self.assertEqual(settings.max_concurrent, 2)
        self.assertEqual(settings.proxy_url, "")


if __name__ == "__main__":
    unittest.main()
