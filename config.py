"""Configuration module for PillNow Schedule Service.

This module provides configuration settings using Pydantic Settings.
Environment variables can be used to override default values.
"""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings for PillNow Schedule Service.

    All settings can be overridden via environment variables.
    Example: export DATABASE_URL="postgresql://..."
    """

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./pillnow.db"
    """Database connection URL. Default: SQLite file in current directory"""

    # API Server Configuration
    API_HOST: str = "0.0.0.0"
    """API server host address"""

    API_PORT: int = 8010
    """API server port"""

    CORS_ORIGINS: List[str] = ["http://localhost:8081", "http://localhost:19006"]
    """Origins allowed to call the API (Expo dev server defaults)"""

    # Auth Configuration
    JWT_SECRET: str = "change-me-in-production"
    """Secret used to sign bearer tokens"""

    JWT_ALGORITHM: str = "HS256"

    JWT_EXPIRE_DAYS: int = 7
    """Token lifetime in days"""

    # Store client Configuration
    STORE_API_URL: str = "http://127.0.0.1:8010"
    """Base URL the schedule writer uses to reach the REST store"""

    STORE_TIMEOUT: float = 30.0

    # MCP Server Configuration
    MCP_HOST: str = "127.0.0.1"
    MCP_PORT: int = 8011

    MCP_TRANSPORT: str = "sse"
    """MCP transport type: 'stdio' for local, 'sse' for network access"""

    # Alert Worker Configuration
    WORKER_ENABLED: bool = True
    """Enable/disable the background worker that flags due doses"""

    WORKER_CHECK_INTERVAL: int = 60
    """Interval in seconds for checking due doses (default: 60 seconds)"""

    class Config:
        """Pydantic config"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
