from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    DB_CONNECTION_STRING: str = "mongodb://localhost:27017"
    DB_NAME: str = "mailsync"
    JWT_SECRET: str = ""
    ALGORITHM: str = "HS256"
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    ENCRYPTION_KEY: str = ""
    FRONTEND_URL: str = ""
    GMAIL_WEBHOOK_TOKEN: str = ""
    MAIL_SYNC_SCHEDULER_ENABLED: bool = True
    MAIL_SYNC_INTERVAL_MINUTES: int = 10
    MAIL_SYNC_TIME_BUDGET_SECONDS: float = 25
    MAIL_SYNC_FULL_WINDOW_DAYS: int = 7
    MAIL_SYNC_PAGE_SIZE: int = 100
    MAIL_SYNC_MAX_BODY_LENGTH: int = 10 * 1024 * 1024

    model_config = SettingsConfigDict(env_file=".env.local")

settings = Settings()
