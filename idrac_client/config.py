"""
Configuration for the iDRAC client.

Reads from environment variables (prefix IDRAC_) with sensible defaults.
Keyword arguments passed to Client always win over these values.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings loaded from environment."""

    # Connection
    port: int = 443
    use_ssl: bool = True
    verify_ssl: bool = False  # iDRAC ships self-signed certificates
    legacy_tls: bool = False  # iDRAC 7/8 firmware that only negotiates TLSv1.0/1.1
    connect_timeout: float = 5.0
    read_timeout: float = 30.0

    # Authenticated request retries (one budget per call)
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0
    auth_retry_delay: float = 2.0

    # Session lifecycle
    auto_delete_sessions: bool = True
    session_delete_delay: float = 1.0
    session_settle_delay: float = 3.0

    # Job / task polling
    job_poll_interval: float = 10.0
    job_max_polls: int = 36  # ~6 minutes
    task_poll_interval: float = 5.0
    task_max_polls: int = 120  # ~10 minutes

    # iDRAC address change
    cutover_timeout: float = 300.0
    cutover_probe_interval: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_format: Optional[str] = None

    class Config:
        env_prefix = "IDRAC_"


settings = Settings()
