from __future__ import annotations

import os


class Settings:
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    queue_name: str = os.getenv("QUEUE_NAME", "cutout")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    max_image_bytes: int = int(os.getenv("MAX_IMAGE_BYTES", str(12 * 1024 * 1024)))
    max_batch_files: int = int(os.getenv("MAX_BATCH_FILES", "15"))
    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "45"))
    max_image_pixels: int = int(os.getenv("MAX_IMAGE_PIXELS", str(20_000_000)))
    default_style: str = os.getenv("DEFAULT_STYLE", "Flat")

    job_result_ttl_seconds: int = int(os.getenv("JOB_RESULT_TTL_SECONDS", "86400"))
    job_failure_ttl_seconds: int = int(os.getenv("JOB_FAILURE_TTL_SECONDS", "86400"))
    job_retry_max: int = int(os.getenv("JOB_RETRY_MAX", "2"))
    job_retry_intervals: tuple[int, ...] = tuple(
        int(x.strip()) for x in os.getenv("JOB_RETRY_INTERVALS", "5,20").split(",") if x.strip()
    )

    worker_concurrency: int = int(os.getenv("WORKER_CONCURRENCY", "1"))


settings = Settings()
