from __future__ import annotations

import os
from typing import Any, Dict, Tuple

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class GeminiConfig(BaseModel):
    api_key: str = ""
    # Flash has much higher rate limits than Pro and is plenty for chaptering
    model: str = "gemini-2.0-flash"
    stt_model: str = "gemini-2.0-flash"
    request_timeout_seconds: int = 120
    max_retries: int = 3
    file_poll_interval_seconds: float = 2.0
    file_processing_timeout_seconds: float = 300.0


class ToolsConfig(BaseModel):
    """External binaries. Empty paths mean "resolve per platform at call time"."""
    ytdlp_path: str = ""
    ffmpeg_path: str = ""
    bin_dir: str = "./bin"
    ytdlp_cache_dir: str = "/tmp/yt-dlp-cache"
    duration_timeout_seconds: float = 120.0


class SamplingConfig(BaseModel):
    max_samples: int = 15
    sample_length_seconds: int = 40
    min_sample_seconds: int = 5
    short_video_seconds: int = 600


class ExtractionConfig(BaseModel):
    max_concurrent: int = 5
    sample_rate: int = 16000
    channels: int = 1
    ffmpeg_threads: int = 0


class ChaptersConfig(BaseModel):
    max_chapters: int = 15
    intro_threshold_seconds: int = 10
    intro_title: str = "Introduction"
    max_prompt_segments: int = 500


class RedisConfig(BaseModel):
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str = ""
    # Allow setting a full URL directly (takes precedence over individual fields)
    full_url: str = ""

    @property
    def url(self) -> str:
        if self.full_url:
            return self.full_url
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class StorageConfig(BaseModel):
    temp_storage_path: str = "./temp_storage"
    max_transcript_size_mb: float = 5.0
    job_retention_hours: int = 24


class AppConfig(BaseModel):
    app_name: str = "ChapterGen"
    debug: bool = True
    log_level: str = "info"
    # Comma-separated list of allowed frontend origins for CORS.
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
        env_nested_delimiter="__",
    )

    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    chapters: ChaptersConfig = Field(default_factory=ChaptersConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[Any, ...]:
        """
        Support BOTH:
        - Nested env vars (e.g., GEMINI__API_KEY) via env_nested_delimiter
        - Flat env vars (e.g., GEMINI_API_KEY) via a legacy mapping source

        Priority: init > env > dotenv > legacy > secrets
        """

        def legacy_flat_env_source() -> Dict[str, Any]:
            env: Dict[str, str] = {}
            try:
                from dotenv import dotenv_values  # local import to avoid hard dependency at import-time

                env_file = cls.model_config.get("env_file", ".env")
                if env_file:
                    file_vals = {k: (v or "") for k, v in dotenv_values(env_file).items()}
                    env.update({k: v for k, v in file_vals.items() if k})
            except Exception:
                # If dotenv parsing fails, fall back to environment only.
                pass

            # Environment variables override .env values
            env.update({k: v for k, v in os.environ.items()})

            def get(var: str, default: str = "") -> str:
                v = env.get(var)
                return default if v is None else v

            def get_bool(var: str) -> Any:
                if env.get(var) is None:
                    return None
                raw = get(var).strip().lower()
                if raw in ("true", "1", "yes", "y", "on"):
                    return True
                if raw in ("false", "0", "no", "n", "off"):
                    return False
                return None

            def get_int(var: str) -> Any:
                if env.get(var) is None:
                    return None
                try:
                    return int(get(var).strip())
                except Exception:
                    return None

            def get_float(var: str) -> Any:
                if env.get(var) is None:
                    return None
                try:
                    return float(get(var).strip())
                except Exception:
                    return None

            out: Dict[str, Any] = {}

            def set_path(path: Tuple[str, ...], value: Any) -> None:
                d: Dict[str, Any] = out
                for key in path[:-1]:
                    d = d.setdefault(key, {})
                d[path[-1]] = value

            # Gemini
            if env.get("GEMINI_API_KEY") is not None:
                set_path(("gemini", "api_key"), get("GEMINI_API_KEY"))
            if env.get("GEMINI_MODEL") is not None:
                set_path(("gemini", "model"), get("GEMINI_MODEL"))
            if env.get("GEMINI_STT_MODEL") is not None:
                set_path(("gemini", "stt_model"), get("GEMINI_STT_MODEL"))
            v = get_int("GEMINI_MAX_RETRIES")
            if v is not None:
                set_path(("gemini", "max_retries"), v)

            # External tools
            if env.get("YTDLP_PATH") is not None:
                set_path(("tools", "ytdlp_path"), get("YTDLP_PATH"))
            if env.get("FFMPEG_PATH") is not None:
                set_path(("tools", "ffmpeg_path"), get("FFMPEG_PATH"))
            if env.get("TOOLS_BIN_DIR") is not None:
                set_path(("tools", "bin_dir"), get("TOOLS_BIN_DIR"))
            v = get_float("DURATION_TIMEOUT_SECONDS")
            if v is not None:
                set_path(("tools", "duration_timeout_seconds"), v)

            # Sampling
            v = get_int("MAX_SAMPLES")
            if v is not None:
                set_path(("sampling", "max_samples"), v)
            v = get_int("SAMPLE_LENGTH_SECONDS")
            if v is not None:
                set_path(("sampling", "sample_length_seconds"), v)

            # Extraction
            v = get_int("MAX_CONCURRENT_EXTRACTIONS")
            if v is not None:
                set_path(("extraction", "max_concurrent"), v)
            v = get_int("FFMPEG_THREADS")
            if v is not None:
                set_path(("extraction", "ffmpeg_threads"), v)

            # Chapters
            v = get_int("MAX_CHAPTERS")
            if v is not None:
                set_path(("chapters", "max_chapters"), v)

            # Redis
            if env.get("REDIS_URL") is not None:
                set_path(("redis", "full_url"), get("REDIS_URL"))
            if env.get("REDIS_HOST") is not None:
                set_path(("redis", "host"), get("REDIS_HOST"))
            if env.get("REDIS_PORT") is not None:
                set_path(("redis", "port"), get("REDIS_PORT"))
            if env.get("REDIS_DB") is not None:
                set_path(("redis", "db"), get("REDIS_DB"))
            if env.get("REDIS_PASSWORD") is not None:
                set_path(("redis", "password"), get("REDIS_PASSWORD"))

            # Storage
            if env.get("TEMP_STORAGE_PATH") is not None:
                set_path(("storage", "temp_storage_path"), get("TEMP_STORAGE_PATH"))
            v = get_int("JOB_RETENTION_HOURS")
            if v is not None:
                set_path(("storage", "job_retention_hours"), v)

            # App
            if env.get("APP_NAME") is not None:
                set_path(("app", "app_name"), get("APP_NAME"))
            val = get_bool("DEBUG")
            if val is not None:
                set_path(("app", "debug"), val)
            if env.get("LOG_LEVEL") is not None:
                set_path(("app", "log_level"), get("LOG_LEVEL"))
            if env.get("CORS_ORIGINS") is not None:
                set_path(("app", "cors_origins"), get("CORS_ORIGINS"))

            return out

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            legacy_flat_env_source,
            file_secret_settings,
        )

    @property
    def redis_url(self) -> str:
        return self.redis.url

    @property
    def temp_dir(self) -> str:
        return self.storage.temp_storage_path

    @property
    def audio_dir(self) -> str:
        return f"{self.storage.temp_storage_path}/audio"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
