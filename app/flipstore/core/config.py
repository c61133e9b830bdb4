from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "flipstore"
    LOG_LEVEL: str = "INFO"
    STORE_BACKEND: str = "memory"
    DATABASE_URL: str = "sqlite+pysqlite:///./flipstore.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "FF4J_"
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "ff4j"
    MONGODB_COLLECTION: str = "features"
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: float = 300.0
    CACHE_NEGATIVE_TTL_SECONDS: float = 30.0
    CACHE_LOCK_STRIPES: int = 16
    FEATURES_IMPORT_PATH: str = ""
    STRATEGY_MODULE_PREFIXES: str = "app.flipstore."
    METRICS_ENABLED: bool = True

settings = Settings()
