from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    POOL_SIZE: int = 10  # idle connections kept per datasource
    POOL_MAX_AGE_SEC: float = 600.0
    CONNECT_TIMEOUT: int = 10
    FINALE_WORKERS: int = 4

    # Reads DBSTAGE_* from the environment or a local .env file
    model_config = SettingsConfigDict(
        env_prefix="DBSTAGE_", env_file=".env", extra="ignore"
    )


settings = Settings()
