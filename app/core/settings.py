"""
Core settings and environment variables for the report enrichment service.
Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Create a .env file in the root directory to configure these.
    """

    # Application
    APP_NAME: str = "Swachh Report Pipeline"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # CORS - Frontend URLs allowed to access this API
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:5174,http://127.0.0.1:5173,http://127.0.0.1:5174"

    # Firebase/Firestore
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None  # Path to service account JSON
    REPORTS_COLLECTION: str = "reports"
    ROLES_COLLECTION: str = "user_roles"

    # In-memory store for local development and tests
    USE_MOCK_DB: bool = False

    # Vision classifier
    AI_ENABLED: bool = True  # if False, only the mock classifier is used
    AI_PROVIDER: str = "openrouter"  # "openrouter", "openai" or "mock"
    OPENAI_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None
    OPENROUTER_API_KEY: Optional[str] = None
    AI_BASE_URL: str = "https://openrouter.ai/api/v1"
    AI_VISION_MODEL: str = "google/gemini-flash-1.5"
    AI_TIMEOUT_SECONDS: float = 30.0  # classification is slow, keep this generous
    IMAGE_FETCH_TIMEOUT_SECONDS: float = 10.0

    # Enrichment pipeline
    STORE_TIMEOUT_SECONDS: float = 5.0
    ENRICHMENT_DEADLINE_SECONDS: float = 60.0
    ENRICHMENT_WORKERS: int = 4
    ZONE_LATITUDE_THRESHOLD: float = 18.5204  # roughly central Pune
    HIGH_CONFIDENCE_THRESHOLD: float = 0.85
    PIPELINE_STALE_AFTER_MINUTES: int = 15
    ALERT_AFTER_CONSECUTIVE_MARK_FAILURES: int = 3

    # Trigger source
    # - TRIGGER_MODE: "in_process" (worker threads) or "http" (POST to TRIGGER_URL)
    # - TRIGGER_SECRET: when set, /pipeline/* requires "Authorization: Bearer <secret>"
    TRIGGER_MODE: str = "in_process"
    TRIGGER_URL: str = "http://localhost:8000/pipeline/trigger"
    TRIGGER_SECRET: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def vision_api_key(self) -> Optional[str]:
        """First configured key wins, same order the web client used."""
        for key in (self.OPENROUTER_API_KEY, self.OPENAI_API_KEY, self.GEMINI_API_KEY):
            if key and key.strip():
                return key
        return None


# Global settings instance
settings = Settings()
