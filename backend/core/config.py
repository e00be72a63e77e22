from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Schema Drift"
    VERSION: str = "1.0.0"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Database (snapshot capture)
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 5
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_POOL_RECYCLE: int = 3600
    DATABASE_CONNECT_TIMEOUT: int = 15

    # Comparison Engine
    COMPARISON_TIMEOUT: int = 300  # 5 minutes, 0 disables
    DEFAULT_FILTER_PRESET: str = "NONE"
    STRICT_FILTER_PATTERNS: bool = False

    # Script generation
    DEFAULT_WRAP_OPTION: str = "single_transaction"
    DEFAULT_SYNC_DIRECTION: str = "source_to_destination"

    # History
    HISTORY_FILE: str = "data/comparison_history.json"
    HISTORY_LIMIT: int = 20

    # System schemas to exclude
    SYSTEM_SCHEMAS: List[str] = [
        "pg_catalog",
        "information_schema",
        "pg_toast",
    ]

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    @property
    def cors_origins(self) -> List[str]:
        """Get CORS origins from environment or use defaults"""
        origins = os.getenv("BACKEND_CORS_ORIGINS", "")
        if origins:
            return [origin.strip() for origin in origins.split(",")]
        return self.BACKEND_CORS_ORIGINS

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
