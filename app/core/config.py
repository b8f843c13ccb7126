from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "bootcamp-directory"

    JWT_SECRET: str = "change_me"
    JWT_TTL_MINUTES: int = 43200

    CORS_ORIGINS: str = "http://localhost:3000"

    DATABASE_URL: str
    REDIS_URL: str
    STORE_STATEMENT_TIMEOUT_MS: int = 0  # 0 disables the per-statement deadline

    QUERY_DEFAULT_PAGE_SIZE: int = 25
    QUERY_MAX_PAGE_SIZE: int = 100

    AGGREGATE_RECOMPUTE_MODE: str = "inline"  # inline | detached

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def aggregate_recompute_detached(self) -> bool:
        return self.AGGREGATE_RECOMPUTE_MODE.strip().lower() == "detached"

settings = Settings()
