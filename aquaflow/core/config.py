from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "AquaFlow API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    DATABASE_URL: str = "sqlite:///./data/aquaflow.db"
    DB_WAIT_TIMEOUT_SECONDS: int = 60

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v

    # Remote store (server side)
    STORE_LOCK_TIMEOUT_SECONDS: float = 30.0

    # Sync client
    REMOTE_STORE_URL: str = "http://localhost:8000/api/v1/data"
    REMOTE_TIMEOUT_SECONDS: float = 20.0
    PERSIST_WORKERS: int = 1  # >1 lets two writes of one record reach the store out of order

    # Built-in administrator login (not stored in the Users table)
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin"
    # Password reset codes stop working after this many minutes
    RESET_CODE_TTL_MINUTES: int = 15

    # Catalog defaults used when the Settings table has no value yet
    DEFAULT_GALLON_TYPES: str = "Slim,Round,5G"
    DEFAULT_TIME_SLOTS: str = "9am–12pm,1pm–5pm"
    DEFAULT_GALLON_PRICE: float = 25.0
    DEFAULT_NEW_GALLON_PRICE: float = 150.0


settings = Settings()
