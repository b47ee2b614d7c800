"""Application configuration loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration – values are read from `.env` or the environment."""

    # LLM (any OpenAI-compatible endpoint)
    openai_api_key: str = ""
    openai_base_url: str | None = None
    text_model: str = "gpt-4o-mini"
    vision_model: str = "gpt-4o-mini"
    llm_timeout: float = 120.0

    # Localization
    target_locale: str = "he"
    target_language: str = "Hebrew"
    default_currency: str = "AED"

    # Paths
    base_dir: Path = Path(__file__).resolve().parent.parent
    sqlite_path: Path = base_dir / "storage" / "sqlite" / "prospects.db"

    # Blob storage (S3-compatible, e.g. Cloudflare R2)
    storage_endpoint_url: str = ""
    storage_bucket: str = ""
    storage_access_key_id: str = ""
    storage_secret_access_key: str = ""
    storage_region: str = "auto"
    storage_public_url: str = ""

    # Source fetching
    max_file_size: int = 50 * 1024 * 1024
    fetch_timeout: float = 60.0

    # Progress cache for fire-and-forget runs
    progress_ttl_seconds: float = 3600.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
