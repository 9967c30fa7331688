"""
Application settings.
Database credentials may be loaded from AWS Secrets Manager at startup.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # AWS
    AWS_REGION: str = "us-east-1"
    DB_SECRET_NAME: Optional[str] = None  # e.g. "imoveis-chat/db"

    # Database (PostgreSQL when DB_HOST is set, SQLite otherwise)
    DB_HOST: Optional[str] = None
    DB_PORT: int = 5432
    DB_NAME: Optional[str] = None
    DB_USER: Optional[str] = None
    DB_PASS: Optional[str] = None
    SQLITE_URL: str = "sqlite:///./chat.db"

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    ANONYMOUS_SESSION_TTL: int = 2592000  # 30 days; anonymous room bindings

    # Chat
    PRESENCE_WINDOW_SECONDS: int = 300
    HEARTBEAT_INTERVAL_SECONDS: int = 60
    LIVE_QUEUE_SIZE: int = 100
    MAX_MESSAGE_LENGTH: int = 10_000
    ANONYMOUS_DEFAULT_NAME: str = "Visitante"

    # Optional
    DEBUG: bool = False
    PROJECT_NAME: str = "Imoveis Chat Backend"
    CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    @property
    def database_url(self) -> str:
        if self.DB_HOST:
            return (
                f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASS}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )
        return self.SQLITE_URL

    @property
    def use_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()

# Load DB credentials from AWS Secrets Manager only when a secret name is
# configured and they aren't already provided via environment variables.
if settings.DB_SECRET_NAME and not settings.DB_HOST:
    from app.aws.secrets import get_db_credentials

    for _key, _value in get_db_credentials(settings.DB_SECRET_NAME, region_name=settings.AWS_REGION).items():
        setattr(settings, _key, _value)
