from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    # Redis Settings
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0

    # Storage
    storage_backend: Literal["redis", "memory"] = "redis"
    uploads_dir: Path = Path("/app/data/uploads")
    max_upload_size_mb: int = 50

    # Scheduler Settings
    run_scheduler: bool = True  # Disable when a separate worker process runs the scheduler
    max_concurrent_jobs: int = Field(default=3, ge=1)
    idle_poll_interval: float = Field(default=5.0, gt=0)
    low_quality_threshold: float = Field(default=60.0, ge=0, le=100)
    recognition_timeout: float = Field(default=120.0, gt=0)
    max_page_retries: int = Field(default=0, ge=0)
    stale_job_threshold: int = 300  # 5 minutes
    shutdown_grace_period: float = 10.0
    user_jobs_limit: int = 50

    # Search Settings
    search_max_documents: int = Field(default=1000, ge=1)  # newest documents scanned per search

    # OCR Settings
    default_engine: str = "tesseract"
    default_language: str = "eng"
    supported_languages: list[str] = [
        "eng", "spa", "fra", "deu", "ita", "por",
        "rus", "chi_sim", "jpn", "kor", "ara", "hin",
    ]
    tesseract_cmd: str | None = None
    denoise_strength: int = Field(default=10, ge=0, le=20)
    binarization_method: Literal["otsu", "adaptive"] = "adaptive"

    # Notification Settings
    notification_prefix: str = "docscan"
    webhook_timeout: int = 30
    webhook_max_retries: int = 3

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
