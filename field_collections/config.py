"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class CollectionsConfig(BaseSettings):
    """Field collections engine configuration"""
    
    # Database configuration
    database_url: str = "memory://"  # memory:// or sqlite:///path/to/file.db
    
    # Operational calendar
    operational_timezone: str = "America/Argentina/Buenos_Aires"
    default_currency: str = "ARS"
    
    # Business rules configuration
    reset_window_hours: int = 24
    default_commission_percentage: str = "0"
    
    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "FIELDCOL_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = CollectionsConfig()


def get_config() -> CollectionsConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CollectionsConfig:
    """Reload configuration from environment"""
    global config
    config = CollectionsConfig()
    return config
