from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "RiskLens"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite+aiosqlite:///./risklens.db"

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Engine tunables
    HISTORY_READ_LIMIT: int = 100
    VELOCITY_LOOKBACK_DAYS: int = 30
    HEATMAP_CELL_LIMIT: int = 50
    GAP_MAX_FRAMEWORKS: int = 10
    GAP_CACHE_TTL_SECONDS: int = 300
    GAP_CACHE_MAX_ENTRIES: int = 256

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()
