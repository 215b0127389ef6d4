from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    LISTING_API_URL: str
    USER_MANAGEMENT_URL: str
    SUPABASE_URL: str
    SUPABASE_KEY: str
    STORAGE_BUCKET: str = "listings"
    REDIS_URL: str = "redis://localhost:6379/0"
    DRAFT_TTL_SECONDS: int = 3600
    UPLOAD_TIMEOUT_SECONDS: float = 60.0
    HEALTH_CACHE_SECONDS: int = 300

    class Config:
        env_file = ".env"

settings = Settings()
