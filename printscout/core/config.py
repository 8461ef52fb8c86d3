"""Configuration from environment variables (.env)."""

import os
from pathlib import Path
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    project_root: Path
    logs_dir: Path
    local_base_url: str
    external_base_url: str
    external_api_token: str
    external_page_size: int  # Provider-imposed page size
    external_max_pages: int
    source_timeout_seconds: float
    detail_backfill_limit: int
    detail_backfill_interval_ms: int
    detail_backfill_timeout_seconds: float
    reference_cache_ttl_seconds: float  # 0 = keep for the whole session
    default_page_size: int
    trending_window_days: int
    user_agent: str
    openrouter_api_key: str  # Empty disables AI query enhancement
    openrouter_base_url: str
    openrouter_models: list[str]  # Model IDs to try in order (fallback on 5xx/429)
    ai_timeout_seconds: float

    @classmethod
    def load(cls) -> "Config":
        project_root = Path(__file__).parent.parent.parent
        log_dir = os.getenv("PRINTSCOUT_LOG_DIR", "").strip()
        return cls(
            project_root=project_root,
            logs_dir=Path(log_dir) if log_dir else project_root / "logs",
            local_base_url=os.getenv("PRINTSCOUT_LOCAL_URL", "http://localhost:3000"),
            external_base_url=os.getenv("THINGIVERSE_API_URL", "https://api.thingiverse.com"),
            external_api_token=os.getenv("THINGIVERSE_API_TOKEN", ""),
            external_page_size=int(os.getenv("EXTERNAL_PAGE_SIZE", "20")),
            external_max_pages=int(os.getenv("EXTERNAL_MAX_PAGES", "3")),
            source_timeout_seconds=float(os.getenv("SOURCE_TIMEOUT_SECONDS", "10")),
            detail_backfill_limit=int(os.getenv("DETAIL_BACKFILL_LIMIT", "20")),
            detail_backfill_interval_ms=int(os.getenv("DETAIL_BACKFILL_INTERVAL_MS", "100")),
            detail_backfill_timeout_seconds=float(os.getenv("DETAIL_BACKFILL_TIMEOUT_SECONDS", "4")),
            reference_cache_ttl_seconds=float(os.getenv("REFERENCE_CACHE_TTL_SECONDS", "0")),
            default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "20")),
            trending_window_days=int(os.getenv("TRENDING_WINDOW_DAYS", "7")),
            user_agent=os.getenv("PRINTSCOUT_USER_AGENT", "PrintScout/1.0"),
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY", "").strip(),
            openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
            openrouter_models=[
                m.strip()
                for m in os.getenv("OPENROUTER_MODELS", "openai/gpt-4o-mini").split(",")
                if m.strip()
            ],
            ai_timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", "15")),
        )

    def validate(self) -> list[str]:
        errors = []
        if not self.local_base_url.strip():
            errors.append("PRINTSCOUT_LOCAL_URL is empty")
        if not 1 <= self.external_max_pages <= 3:
            errors.append(
                f"EXTERNAL_MAX_PAGES must be between 1 and 3, got {self.external_max_pages}"
            )
        if self.external_page_size <= 0:
            errors.append(f"EXTERNAL_PAGE_SIZE must be positive, got {self.external_page_size}")
        if self.detail_backfill_limit < 0:
            errors.append("DETAIL_BACKFILL_LIMIT must not be negative")
        if not self.external_api_token:
            errors.append("THINGIVERSE_API_TOKEN is not set; external search may be rate limited")
        return errors


config = Config.load()
