"""
Application settings.
Database credentials may come from AWS Secrets Manager at startup.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # AWS
    AWS_REGION: str = "us-east-1"
    DB_SECRET_NAME: Optional[str] = None  # e.g. study-sprint/db

    # Database (DATABASE_URL wins over the individual parts)
    DATABASE_URL: Optional[str] = None
    DB_HOST: Optional[str] = None
    DB_PORT: int = 5432
    DB_NAME: str = "study_sprint"
    DB_USER: str = "postgres"
    DB_PASS: str = ""

    # Redis (token -> user session store, written by the identity provider)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    SESSION_TTL: int = 86400  # 24 hours in seconds
    SESSION_KEY_PREFIX: str = "session"

    # Rooms and sprints
    DEFAULT_SPRINT_MINUTES: int = 25
    MAX_SPRINT_MINUTES: int = 240
    MAX_TITLE_LENGTH: int = 120
    MAX_TASK_LENGTH: int = 500

    # Realtime
    EXPIRY_SWEEP_SECONDS: float = 5.0
    SSE_KEEPALIVE_SECONDS: float = 15.0

    # Client-side reconciliation defaults
    TASK_DEBOUNCE_SECONDS: float = 0.5
    COUNTDOWN_TICK_SECONDS: float = 1.0

    # Optional
    DEBUG: bool = False
    PROJECT_NAME: str = "Study Sprint Backend"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        host = self.DB_HOST or "localhost"
        return (
            f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASS}"
            f"@{host}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def use_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()

# Pull DB credentials from Secrets Manager only when nothing was provided
# through the environment (Docker / local dev set DATABASE_URL or DB_HOST).
if settings.DB_SECRET_NAME and not settings.DATABASE_URL and not settings.DB_HOST:
    from studyroom.aws.secrets import get_secret

    _db_secret = get_secret(settings.DB_SECRET_NAME, region_name=settings.AWS_REGION)
    settings.DB_HOST = _db_secret["host"]
    settings.DB_PORT = int(_db_secret.get("port", 5432))
    settings.DB_NAME = _db_secret["database"]
    settings.DB_USER = _db_secret["username"]
    settings.DB_PASS = _db_secret["password"]
