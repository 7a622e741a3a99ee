"""
Application configuration
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TITLE: str = "Crossbuild API"
    API_VERSION: str = "0.1.0"

    # Redis
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Workers
    CROSSBUILD_WORKSPACE: str = "/tmp/crossbuild"
    ARTIFACTS_PATH: str = "/files/artifacts"

    # Build Defaults
    DEFAULT_API_LEVEL: int = 24
    DEFAULT_STEP_TIMEOUT: int = 1800  # seconds
    DEFAULT_PROJECT_DIR: str = "/src/src-tauri"

    @property
    def redis_url(self) -> str:
        """Redis connection string"""
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
