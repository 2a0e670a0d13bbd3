"""
Application configuration settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Contract Insight"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # Storage
    DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379/0"

    # Gateway API key (X-API-Key header)
    API_KEY: Optional[str] = None

    # OpenAI Configuration
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.3
    LLM_MAX_TOKENS: Optional[int] = None
    LLM_TIMEOUT_SECONDS: float = 120.0

    # Mistral Configuration (PDF text extraction)
    MISTRAL_API_KEY: Optional[str] = None
    MISTRAL_OCR_MODEL: str = "mistral-ocr-latest"

    # Detection
    DETECTION_SAMPLE_CHARS: int = 2000

    # Entitlements
    FREE_TIER_MAX_ANALYSES: int = 3

    # Cache TTLs (seconds)
    ANALYSIS_CACHE_TTL_SECONDS: int = 3600  # analysis:{id}
    OWNER_LIST_CACHE_TTL_SECONDS: int = 300  # owner-analyses:{owner_id}
    UPLOAD_STAGING_TTL_SECONDS: int = 3600
    CACHE_INVALIDATION_ATTEMPTS: int = 3

    # Rate limiting (fixed window per client identity)
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60

    # Uploads
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # Q&A context
    QA_CONTEXT_MAX_ITEMS: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
