"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class PickleBankConfig(BaseSettings):
    """PickleBank ledger configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "picklebank.sqlite"
    sqlite_busy_timeout: float = 5.0  # Seconds to wait on a locked database

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    cors_origins: str = "*"  # Comma separated

    # Security configuration
    admin_secret: str = ""  # Empty disables the admin endpoints

    # Authorization code configuration
    code_ttl_seconds: int = 300  # 5 minutes
    code_length: int = 6

    # Ledger configuration
    recent_transactions_limit: int = 50
    max_transactions_limit: int = 500
    lock_timeout_seconds: float = 5.0

    # Notifier configuration
    discord_token: Optional[str] = None  # Bot token, DMs codes to linked users
    discord_api_url: str = "https://discord.com/api/v10"
    notifier_url: str = ""  # JSON webhook relay, used when no Discord token is set
    notifier_token: Optional[str] = None
    notifier_timeout: float = 5.0
    notification_workers: int = 4
    log_codes: bool = False  # Development only: write codes to the log when nothing delivers them

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    class Config:
        env_prefix = "PICKLEBANK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = PickleBankConfig()


def get_config() -> PickleBankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> PickleBankConfig:
    """Reload configuration from environment"""
    global config
    config = PickleBankConfig()
    return config
