import os
import unittest
from unittest.mock import patch


from chaptergen.config import Settings


class TestSettings(unittest.TestCase):
    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()
        self.assertEqual(settings.sampling.max_samples, 15)
        self.assertEqual(settings.sampling.sample_length_seconds, 40)
        self.assertEqual(settings.extraction.max_concurrent, 5)
        self.assertEqual(settings.chapters.max_chapters, 15)
        self.assertEqual(settings.tools.duration_timeout_seconds, 120.0)
        self.assertTrue(settings.audio_dir.endswith("audio"))

    def test_legacy_flat_env(self) -> None:
        env = {
            "GEMINI_API_KEY": "secret",
            "GEMINI_MODEL": "gemini-2.5-flash",
            "MAX_SAMPLES": "8",
            "MAX_CONCURRENT_EXTRACTIONS": "3",
            "DURATION_TIMEOUT_SECONDS": "30",
            "YTDLP_PATH": "/usr/local/bin/yt-dlp",
            "REDIS_URL": "redis://cache:6379/2",
            "JOB_RETENTION_HOURS": "48",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()
        self.assertEqual(settings.gemini.api_key, "secret")
        self.assertEqual(settings.gemini.model, "gemini-2.5-flash")
        self.assertEqual(settings.sampling.max_samples, 8)
        self.assertEqual(settings.extraction.max_concurrent, 3)
        self.assertEqual(settings.tools.duration_timeout_seconds, 30.0)
        self.assertEqual(settings.tools.ytdlp_path, "/usr/local/bin/yt-dlp")
        self.assertEqual(settings.redis_url, "redis://cache:6379/2")
        self.assertEqual(settings.storage.job_retention_hours, 48)

    def test_nested_env_wins_over_flat(self) -> None:
        env = {"GEMINI_API_KEY": "flat", "GEMINI__API_KEY": "nested"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()
        self.assertEqual(settings.gemini.api_key, "nested")


if __name__ == "__main__":
    unittest.main()
