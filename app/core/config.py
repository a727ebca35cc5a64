"""
Core configuration module using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./chatline.db"

    # MinIO Configuration (image storage)
    minio_endpoint: str = "localhost:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "chatline-images"
    minio_secure: bool = False

    # Upload Configuration
    max_file_size: int = 5_242_880  # 5MB

    # Security Configuration
    jwt_secret_key: str = "your-super-secret-jwt-key-change-in-production"
    jwt_algorithm: str = "HS256"
    token_expiry_days: int = 7
    bcrypt_rounds: int = 10

    # Application Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 4000
    cors_origin: str = "*"
    default_page_size: int = 50
    log_level: str = "INFO"
    log_json: bool = True
    tracing_enabled: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
