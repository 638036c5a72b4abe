from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "OpsFlow Approvals"
    debug: bool = False
    
    # Database
    database_url: str = "sqlite:///./opsflow.db"
    database_echo: bool = False
    
    # Decisions
    decision_max_attempts: int = 3  # optimistic-lock retries per decision
    
    # Organizational role directory
    directory_url: Optional[str] = None
    directory_timeout: float = 5.0  # seconds
    directory_max_retries: int = 2
    
    # Outbound chain events
    event_webhook_url: Optional[str] = None
    
    # Delegations
    delegation_expiry_warning_days: int = 3
    
    # Logging
    log_level: str = "INFO"
    log_dir: str = "/var/log/opsflow"
    log_to_file: bool = False  # console only unless enabled
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="OPSFLOW_",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
