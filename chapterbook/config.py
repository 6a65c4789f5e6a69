import json
from functools import lru_cache

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Chapterbook API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:3000,http://localhost:9002"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # File Upload
    max_upload_size_mb: int = 2000
    max_cover_art_size_mb: int = 5
    allowed_image_types: list[str] = ["image/jpeg", "image/jpg", "image/png", "image/webp"]

    # Working directories (None = system temp dir)
    work_dir_root: str | None = None

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    probe_timeout_s: float = 60.0
    encode_timeout_s: float = 3 * 60 * 60

    # Audiobook encoding
    audio_codec: str = "aac"
    audio_bitrate: str = "64k"
    genre: str = "Audiobook"

    # Output delivery
    output_media_type: str = "audio/mp4a-latm"
    output_suffix: str = "_Audiobook"
    output_extension: str = ".m4b"
    stream_chunk_size: int = 64 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
