from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "lingoclass"
    APP_VERSION: str = "1.0.0"

    SECRET_KEY: str = "dev-secret-key-change-me"
    DATABASE_URL: str = "sqlite:///lingoclass.db"
    SQL_ECHO: bool = False

    # Auth
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    AUTH_COOKIE_NAME: str = "access_token"
    SESSION_COOKIE_SAMESITE: str = "Lax"
    SESSION_COOKIE_SECURE: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # text|json

    # Class window for attendance
    EARLY_ENTRY_MINUTES: int = 15
    LATE_ENTRY_MINUTES: int = 15

    # Gamification
    POINTS_PER_LEVEL: int = 100
    STREAK_MILESTONES: dict[int, int] = {7: 50, 30: 200, 100: 1000}

    SLACK_WEBHOOK_URL: str | None = None
    NOTIFY_TIMEOUT_SECONDS: float = 5.0


settings = Settings()
