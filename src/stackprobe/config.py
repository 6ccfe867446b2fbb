from dotenv import load_dotenv
from dataclasses import dataclass
from pathlib import Path
import json
import os

load_dotenv()  # Loads variables from .env file


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///stackprobe.db")  # Default to SQLite
    DB_BACKEND = os.getenv("DB_BACKEND", "local")  # 'local' or 'memory'
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    USER_AGENT = os.getenv(
        "USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    )


settings = Settings()


@dataclass
class ScanConfig:
    """Tunables for the scan pipeline and the rescan worker."""

    # Passive fetch
    fetch_timeout: float = 15.0  # seconds
    max_body_bytes: int = 5 * 1024 * 1024  # 5MB
    user_agent: str = settings.USER_AGENT

    # Interaction probe
    probe_message: str = "Hi"
    probe_window_seconds: float = 8.0
    probe_settle_seconds: float = 2.0
    probe_response_chars: int = 500

    # Rescan worker
    rescan_window_hours: float = 24.0
    worker_interval_seconds: float = 3600.0
    worker_initial_delay_seconds: float = 60.0
    rescan_delay_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "ScanConfig":
        """Load configuration from environment variables.

        Environment variables are prefixed with STACKPROBE_,
        e.g. STACKPROBE_FETCH_TIMEOUT=20

        Returns:
            ScanConfig with values from environment
        """
        config = cls()
        prefix = "STACKPROBE_"

        for field_name in config.__dataclass_fields__:
            env_value = os.getenv(f"{prefix}{field_name.upper()}")
            if env_value is None:
                continue

            current = getattr(config, field_name)
            try:
                if isinstance(current, int):
                    setattr(config, field_name, int(env_value))
                elif isinstance(current, float):
                    setattr(config, field_name, float(env_value))
                else:
                    setattr(config, field_name, env_value)
            except ValueError:
                pass  # Keep default if conversion fails

        return config

    @classmethod
    def from_file(cls, path: str) -> "ScanConfig":
        """Load configuration from a JSON file.

        Args:
            path: Path to JSON configuration file

        Returns:
            ScanConfig with values from file
        """
        config = cls()
        file_path = Path(path)

        if not file_path.exists():
            return config

        with open(file_path, 'r') as f:
            data = json.load(f)

        section = data.get('scan', data)
        for field_name in config.__dataclass_fields__:
            if field_name in section:
                setattr(config, field_name, section[field_name])

        return config

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            field_name: getattr(self, field_name)
            for field_name in self.__dataclass_fields__
        }


default_config = ScanConfig()
