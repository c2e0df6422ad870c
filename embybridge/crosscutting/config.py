import os
from dataclasses import dataclass
from typing import Dict, Any, Optional

from dotenv import load_dotenv


class ConfigError(Exception):
    """Configuration error."""
    pass


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}")
    return value


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass
class Settings:
    """Application settings read from the environment."""

    emby_url: Optional[str] = None
    emby_username: Optional[str] = None
    emby_password: Optional[str] = None
    import_concurrency: int = 5
    match_limit: int = 5
    duration_tolerance_seconds: int = 5
    ncm_batch_size: int = 200
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def validate(self) -> Dict[str, bool]:
        """Report which Emby settings are present."""
        return {
            'emby_url': bool(self.emby_url),
            'emby_username': bool(self.emby_username),
            'emby_password': bool(self.emby_password),
        }

    def require_emby(self) -> None:
        """Raise ConfigError naming any missing Emby setting."""
        missing = [key.upper() for key, ok in self.validate().items() if not ok]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    def summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        return {
            'emby_url': self.emby_url,
            'emby_username': self.emby_username,
            'has_emby_password': bool(self.emby_password),
            'import_concurrency': self.import_concurrency,
            'match_limit': self.match_limit,
            'duration_tolerance_seconds': self.duration_tolerance_seconds,
            'ncm_batch_size': self.ncm_batch_size,
            'log_level': self.log_level,
            'log_file': self.log_file,
            'validation': self.validate(),
        }


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load settings from the environment, reading a .env file first if present."""
    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    log_level = (_env_str('EMBYBRIDGE_LOG_LEVEL') or 'INFO').upper()
    if log_level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        raise ConfigError(f"Unsupported log level: {log_level}")

    return Settings(
        emby_url=_env_str('EMBY_URL'),
        emby_username=_env_str('EMBY_USERNAME'),
        emby_password=os.getenv('EMBY_PASSWORD') or None,
        import_concurrency=_env_int('EMBYBRIDGE_IMPORT_CONCURRENCY', 5),
        match_limit=_env_int('EMBYBRIDGE_MATCH_LIMIT', 5),
        duration_tolerance_seconds=_env_int('EMBYBRIDGE_DURATION_TOLERANCE', 5, minimum=0),
        ncm_batch_size=_env_int('EMBYBRIDGE_NCM_BATCH_SIZE', 200),
        log_level=log_level,
        log_file=_env_str('EMBYBRIDGE_LOG_FILE'),
    )
