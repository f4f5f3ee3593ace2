from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Persistence
    SETTINGS_PATH: str = "data/crossbill_settings.json"
    SESSION_DB_PATH: str = "data/crossbill_sessions.sqlite3"
    PERSIST_ENABLED: bool = True

    # Defaults for the user-editable config
    DEFAULT_BASE_URL: str = "http://localhost:8000"
    DEFAULT_MIN_SESSION_SECONDS: int = 60
    DEVICE_ID: Optional[str] = None

    # Auth
    TOKEN_EXPIRY_BUFFER_SECONDS: int = 60
    DEFAULT_TOKEN_LIFETIME_SECONDS: int = 900  # used when the server omits expires_in

    # System
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: int = 30
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
