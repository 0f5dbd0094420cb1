import unittest

from fetchq.utils.formatting import format_duration, format_percent, format_size


class FormattingTests(unittest.TestCase):
    def test_sizes_use_decimal_units(self) -> None:
        self.assertEqual(format_size(1_500_000), "1.5 MB")
        self.assertEqual(format_size(None), "0 bytes")

    def test_durations_drop_empty_units(self) -> None:
        self.assertEqual(format_duration(9252), "2h 34m 12s")
        self.assertEqual(format_duration(3600), "1h")
        self.assertEqual(format_duration(0.4), "0s")

    def test_percent(self) -> None:
        self.assertEqual(format_percent(0.5), "50%")
        self.assertEqual(format_percent(None), "n/a")


if __name__ == "__main__":
    unittest.main()
