"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Dict, Optional


class EscrowConfig(BaseSettings):
    """Conditional escrow engine configuration"""
    
    # Deployment
    admin_id: str = "deployer"  # Initial admin identity
    initial_balances: Dict[str, int] = {}  # JSON mapping in ESCROW_INITIAL_BALANCES
    
    # Storage configuration
    storage_backend: str = "memory"  # memory or sqlite
    database_path: str = "escrow.db"
    
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
        env_prefix = "ESCROW_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = EscrowConfig()


def get_config() -> EscrowConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> EscrowConfig:
    """Reload configuration from environment"""
    global config
    config = EscrowConfig()
    return config
