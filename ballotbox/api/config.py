"""Configuration management for the ballot box API."""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "ballotbox-api"
    API_VERSION: str = "v1"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Store selection. When DATABASE_URL is unset the PostgreSQL parts below are used.
    DATABASE_URL: Optional[str] = None

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "voting_system"
    POSTGRES_USER: str = "ballot_user"
    POSTGRES_PASSWORD: str = "ballot_pass"

    # Connection pools
    POSTGRES_POOL_MIN_SIZE: int = 10
    POSTGRES_POOL_MAX_SIZE: int = 20

    # Vote transaction bound, covers lock waits and the commit
    VOTE_TIMEOUT_SECONDS: float = 5.0

    # Sessions
    SESSION_TTL_MINUTES: int = 30

    # Password hashing cost
    BCRYPT_ROUNDS: int = 12

    # Rate limiting
    RATE_LIMIT: str = "30/minute"
    RATE_LIMIT_ENABLED: bool = True

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def database_url(self) -> str:
        """URL of the transactional store."""
        return self.DATABASE_URL or self.postgres_dsn


settings = Settings()
