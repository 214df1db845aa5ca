"""
Unified Configuration Loader for the fleet rental backend.

Loads configuration from YAML files and resolves secrets from the
environment. Provides a single source of truth for all application
configuration.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from decouple import config as env_config

logger = logging.getLogger(__name__)


def _load_root_env():
    """Load root .env file for bootstrap secrets (DATABASE_URL, JWT_SECRET)."""
    from dotenv import load_dotenv

    root_env = Path(__file__).resolve().parents[4] / '.env'
    if root_env.exists():
        load_dotenv(root_env)
        logger.debug(f"Loaded root .env from {root_env}")


# Load root .env on module import
_load_root_env()


class ConfigSection:
    """
    Dynamic configuration section that allows dot-notation access.
    Example: config.database.backend.host
    """

    def __init__(self, data: Dict[str, Any] = None):
        self._data = data or {}

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            return super().__getattribute__(name)

        if name not in self._data:
            return None

        value = self._data[name]

        # If it's a dict, wrap it in ConfigSection for nested access
        if isinstance(value, dict):
            return ConfigSection(value)

        # If key ends with _env, resolve from the environment
        if isinstance(value, str) and name.endswith('_env'):
            return env_config(value, default=None)

        return value

    def __getitem__(self, key: str) -> Any:
        return getattr(self, key)

    def __bool__(self) -> bool:
        return bool(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value with optional default."""
        value = getattr(self, key)
        return value if value is not None else default

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (does not resolve environment references)."""
        return self._data.copy()

    def __repr__(self):
        return f"ConfigSection({list(self._data.keys())})"


class AppConfig:
    """
    Main application configuration.
    Loads every YAML file in the config directory as a named section.
    """

    def __init__(self, config_dir: str = None):
        """
        Initialize configuration.

        Args:
            config_dir: Path to config directory containing YAML files
        """
        self._config_dir = Path(config_dir) if config_dir else self._find_config_dir()
        self._sections: Dict[str, ConfigSection] = {}
        self._load_configs()

    def _find_config_dir(self) -> Path:
        """Find config directory by searching from current location."""
        override = env_config('FLEETRENT_CONFIG_DIR', default=None)
        if override:
            return Path(override)

        # Try relative to this file first (backend/config)
        config_path = Path(__file__).resolve().parents[3] / 'config'
        if config_path.exists():
            return config_path

        # Try from cwd
        for candidate in (Path.cwd() / 'backend' / 'config', Path.cwd() / 'config'):
            if candidate.exists():
                return candidate

        logger.warning("Config directory not found, using defaults")
        return config_path

    def _load_configs(self):
        """Load all YAML config files."""
        if not self._config_dir.exists():
            return

        for yaml_file in sorted(self._config_dir.glob("*.yaml")):
            section_name = yaml_file.stem  # filename without extension
            try:
                with open(yaml_file, 'r') as f:
                    data = yaml.safe_load(f) or {}
                self._sections[section_name] = ConfigSection(data)
                logger.debug(f"Loaded config: {section_name}")
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load {yaml_file}: {e}")

    def __getattr__(self, name: str) -> ConfigSection:
        if name.startswith('_'):
            return super().__getattribute__(name)

        if name in self._sections:
            return self._sections[name]

        # Return empty section for missing configs
        return ConfigSection({})

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    def get_secret(self, key: str, default: Any = None) -> Any:
        """Get a secret from the environment (.env is loaded on import)."""
        return env_config(key, default=default)

    def get_raw_config(self, section: str) -> Dict[str, Any]:
        """Get raw config data for a section."""
        yaml_file = self._config_dir / f"{section}.yaml"
        if yaml_file.exists():
            with open(yaml_file, 'r') as f:
                return yaml.safe_load(f) or {}
        return {}


# =============================================================================
# Singleton instance and convenience functions
# =============================================================================

_config_instance: Optional[AppConfig] = None


def get_config(config_dir: str = None) -> AppConfig:
    """
    Get or create the global config instance.

    Args:
        config_dir: Path to config directory (only used on first call)

    Returns:
        AppConfig instance
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = AppConfig(config_dir)

    return _config_instance


# =============================================================================
# Helper functions for common config access patterns
# =============================================================================

def get_database_url(db_name: str = 'backend') -> str:
    """
    Build database URL from config.

    DATABASE_URL in the environment wins over database.yaml.

    Args:
        db_name: Database section name in database.yaml

    Returns:
        SQLAlchemy connection URL
    """
    url = env_config('DATABASE_URL', default=None)
    if url:
        return url

    config = get_config()
    db = getattr(config.database, db_name)

    if not db:
        raise ValueError(f"Database config not found: {db_name}")

    if db.url:
        return db.url

    # password_env resolves from the environment due to _env suffix
    password = db.password_env
    if not password:
        raw_data = config.get_raw_config('database')
        env_key = raw_data.get(db_name, {}).get('password_env', 'unknown')
        raise ValueError(f"Database password not found in environment variable: {env_key}")

    return (
        f"postgresql+psycopg2://{db.username}:{password}"
        f"@{db.host}:{db.port or 5432}/{db.name}"
        f"?sslmode={db.sslmode or 'prefer'}"
    )


def get_timezone() -> str:
    """Operating timezone for billing days and schedules."""
    from .date_utils import DEFAULT_TIMEZONE

    override = env_config('FLEETRENT_TIMEZONE', default=None)
    if override:
        return override
    app_cfg = get_config().app
    return (app_cfg.get('timezone') if app_cfg else None) or DEFAULT_TIMEZONE


def get_flask_config() -> Dict[str, Any]:
    """Get Flask configuration dictionary."""
    config = get_config()
    flask_cfg = config.app.flask

    secret_key = flask_cfg.secret_key_env if flask_cfg else None
    if not secret_key:
        # Generate a random key if not configured
        import secrets
        secret_key = secrets.token_hex(32)
        logger.warning("Flask secret key not configured, using random key")

    return {
        'SECRET_KEY': secret_key,
        'DEBUG': flask_cfg.get('debug', False) if flask_cfg else False,
        'JSON_SORT_KEYS': False,
    }
