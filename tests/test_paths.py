import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fetchq.exceptions import ValidationError
from fetchq.utils.paths import (
    SUBDIR_MAX_CHARS,
    get_data_dir,
    resolve_output_dir,
    sanitize_part,
)
from fetchq.utils.urls import is_http_url


class SanitizePartTests(unittest.TestCase):
    def test_unsafe_runs_become_underscores(self) -> None:
        self.assertEqual(sanitize_part("My Music/2024"), "My_Music_2024")
        self.assertEqual(sanitize_part("a:*?b"), "a_b")

    def test_dot_only_names_are_empty(self) -> None:
        for name in ("", ".", "..", "...", None):
            with self.subTest(name=name):
                self.assertEqual(sanitize_part(name), "")

    def test_length_is_capped(self) -> None:
        self.assertEqual(len(sanitize_part("x" * 300)), SUBDIR_MAX_CHARS)


class ResolveOutputDirTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_empty_subdir_is_root(self) -> None:
        self.assertEqual(resolve_output_dir(self.root, ""), self.root)

    def test_subdir_is_joined(self) -> None:
        self.assertEqual(resolve_output_dir(self.root, "podcasts"), self.root / "podcasts")

    def test_traversal_stays_inside_root(self) -> None:
        for subdir in ("../../etc", "/etc/passwd", "..\\..\\windows", "a/../../b"):
            with self.subTest(subdir=subdir):
                target = resolve_output_dir(self.root, subdir)
                self.assertEqual(target.parent, self.root)

    @unittest.skipIf(os.name == "nt", "symlinks need privileges on Windows")
    def test_symlink_escaping_root_is_rejected(self) -> None:
        outside = tempfile.TemporaryDirectory()
        self.addCleanup(outside.cleanup)
        (self.root / "link").symlink_to(outside.name, target_is_directory=True)
        with self.assertRaises(ValidationError) as ctx:
            resolve_output_dir(self.root, "link")
        self.assertEqual(ctx.exception.reason, "output_dir")


class DataDirTests(unittest.TestCase):
    def test_environment_override(self) -> None:
        with mock.patch.dict(os.environ, {"FETCHQ_HOME": "/srv/fetchq"}):
            self.assertEqual(get_data_dir(), Path("/srv/fetchq"))


class UrlTests(unittest.TestCase):
    def test_accepts_http_and_https(self) -> None:
        self.assertTrue(is_http_url("https://www.youtube.com/watch?v=abc"))
        self.assertTrue(is_http_url(" http://example.com/x "))

    def test_rejects_other_schemes_and_relative(self) -> None:
        for url in ("ftp://example.com/f", "file:///etc/passwd", "example.com/v", "https://", ""):
            with self.subTest(url=url):
                self.assertFalse(is_http_url(url))


if __name__ == "__main__":
    unittest.main()
