import unittest


from chaptergen.models import Chapter
from chaptergen.services.timestamps import format_timestamp, timestamp_to_seconds, validate_chapter_durations


class TestFormatTimestamp(unittest.TestCase):
    def test_known_values(self) -> None:
        self.assertEqual(format_timestamp(0), "0:00")
        self.assertEqual(format_timestamp(65), "1:05")
        self.assertEqual(format_timestamp(3661), "1:01:01")

    def test_fractional_seconds_are_floored(self) -> None:
        self.assertEqual(format_timestamp(59.9), "0:59")
        self.assertEqual(format_timestamp(600.2), "10:00")


class TestTimestampToSeconds(unittest.TestCase):
    def test_formats(self) -> None:
        self.assertEqual(timestamp_to_seconds("00:00"), 0)
        self.assertEqual(timestamp_to_seconds("1:05"), 65)
        self.assertEqual(timestamp_to_seconds("01:01:01"), 3661)
        self.assertEqual(timestamp_to_seconds("90"), 90)
        self.assertEqual(timestamp_to_seconds(42.7), 42)

    def test_unparseable_is_zero(self) -> None:
        self.assertEqual(timestamp_to_seconds("soon"), 0)
        self.assertEqual(timestamp_to_seconds(""), 0)
        self.assertEqual(timestamp_to_seconds(None), 0)
        self.assertEqual(timestamp_to_seconds("1:2:3:4"), 0)


class TestValidateChapterDurations(unittest.TestCase):
    def test_spacing(self) -> None:
        good = [Chapter("0:00", "A"), Chapter("1:00", "B"), Chapter("2:30", "C")]
        bad = [Chapter("0:00", "A"), Chapter("0:45", "B")]
        self.assertTrue(validate_chapter_durations(good))
        self.assertFalse(validate_chapter_durations(bad))
        self.assertTrue(validate_chapter_durations(bad, min_duration=45))


if __name__ == "__main__":
    unittest.main()
