"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """M.A.R.C.H. phase server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; there is no auth layer in front of the tools.
    march_host: str = "127.0.0.1"
    march_port: int = 8001
    march_log_level: str = "info"
    # Binding to a non-loopback host is refused unless this is set true.
    march_allow_insecure_bind: bool = False

    # Storage (encrypted sample store + assessment history)
    db_path: str = "~/.march/march.db"

    # Encryption: comma-separated Fernet keys. The first key encrypts,
    # every key is tried for decryption (key rotation).
    encryption_key: str = ""

    # Phase engine
    march_config_path: str = ""
    history_default_limit: int = 12


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
