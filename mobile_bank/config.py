"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


DEFAULT_JWT_SECRET = "change-me-in-production"
DEFAULT_JWT_REFRESH_SECRET = "change-me-in-production-refresh"


class MobileBankConfig(BaseSettings):
    """Mobile bank backend configuration"""

    model_config = SettingsConfigDict(
        env_prefix="MOBILE_BANK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///mobile_bank.db"  # memory://, sqlite:///path or postgresql://...
    database_pool_size: int = 5
    database_lock_timeout: float = 30.0  # seconds a writer waits for a row lock

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origin: str = "http://localhost:3000"

    # Token configuration
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_refresh_secret: str = DEFAULT_JWT_REFRESH_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expires_in: str = "15m"
    jwt_refresh_expires_in: str = "7d"

    # Password policy
    password_min_length: int = 8
    scrypt_n: int = 16384
    scrypt_r: int = 8
    scrypt_p: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    max_transaction_amount: str = "100000.00"
    destination_policy: str = "credit_if_found"  # external, credit_if_found, strict
    allow_credit_overdraft: bool = True

    # Transaction history
    history_default_limit: int = 20
    history_max_limit: int = 100

    def uses_default_secrets(self) -> bool:
        """Check whether either token secret was left at its shipped default"""
        return (
            self.jwt_secret == DEFAULT_JWT_SECRET
            or self.jwt_refresh_secret == DEFAULT_JWT_REFRESH_SECRET
        )


# Global configuration instance
config = MobileBankConfig()


def get_config() -> MobileBankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MobileBankConfig:
    """Reload configuration from environment"""
    global config
    config = MobileBankConfig()
    return config
