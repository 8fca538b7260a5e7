from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    timezone: str = "UTC"
    sqlite_path: str = "data/recurrence.db"
    database_url: str | None = None
    log_path: str = "logs/recurrence.log"
    log_level: str = "INFO"
    log_retention: str = "14 days"
    catchup_max_iterations: int = 500
    legacy_migration_on_sync: bool = True


settings = Settings()
