"""Load gatherer settings from YAML files and the environment."""

import logging
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional
import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/gatherer.yaml")


@dataclass
class Settings:
    """Runtime configuration.

    Attributes:
        db_path: SQLite database file
        api_base: Base URL of the remote process service; empty means offline
        request_timeout: Timeout in seconds for each remote request
        history_limit: Maximum number of undo snapshots per session
        log_level: Logging level name for the server entry point
    """
    db_path: Path = Path("data/gatherer.db")
    api_base: Optional[str] = None
    request_timeout: float = 10.0
    history_limit: int = 50
    log_level: str = "info"

    @property
    def sync_enabled(self) -> bool:
        return bool(self.api_base)


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load settings from a YAML file, then apply environment overrides.

    Expected format:

    ```yaml
    database:
      path: ~/.gatherer/gatherer.db
    sync:
      api_base: https://api.example.com
      request_timeout: 10
    history_limit: 50
    log_level: info
    ```

    Environment variables (take precedence over the file):
        GATHERER_CONFIG: Path of the YAML file when config_path is not given
        GATHERER_DB_PATH, GATHERER_API_BASE, GATHERER_REQUEST_TIMEOUT

    A missing or unreadable file is logged and the defaults are used.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        The resolved settings
    """
    if config_path is None:
        config_path = Path(os.environ.get("GATHERER_CONFIG", DEFAULT_CONFIG_PATH))

    settings = Settings()
    data = _read_yaml(Path(config_path))

    database = data.get("database") or {}
    sync = data.get("sync") or {}
    if database.get("path"):
        settings.db_path = _expand(database["path"])
    if sync.get("api_base"):
        settings.api_base = str(sync["api_base"])
    if sync.get("request_timeout") is not None:
        settings.request_timeout = float(sync["request_timeout"])
    if data.get("history_limit") is not None:
        settings.history_limit = int(data["history_limit"])
    if data.get("log_level"):
        settings.log_level = str(data["log_level"])

    # Environment overrides
    if os.environ.get("GATHERER_DB_PATH"):
        settings.db_path = _expand(os.environ["GATHERER_DB_PATH"])
    if "GATHERER_API_BASE" in os.environ:
        settings.api_base = os.environ["GATHERER_API_BASE"] or None
    if os.environ.get("GATHERER_REQUEST_TIMEOUT"):
        settings.request_timeout = float(os.environ["GATHERER_REQUEST_TIMEOUT"])

    if settings.api_base:
        settings.api_base = settings.api_base.rstrip("/")

    return settings


def _read_yaml(config_path: Path) -> dict:
    if not config_path.exists():
        logger.debug(f"Config file not found: {config_path}")
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading config: {e}")
        return {}

    if not isinstance(data, dict):
        return {}
    return data


def _expand(path: str | Path) -> Path:
    """Expand user home and environment variables in a path."""
    return Path(os.path.expandvars(str(Path(path).expanduser())))


def save_settings(settings: Settings, config_path: Path) -> None:
    """
    Save settings to a YAML file.

    Args:
        settings: Settings to write
        config_path: Path to write the YAML file
    """
    values = asdict(settings)
    data = {
        "database": {"path": str(values["db_path"])},
        "sync": {
            "api_base": values["api_base"] or "",
            "request_timeout": values["request_timeout"],
        },
        "history_limit": values["history_limit"],
        "log_level": values["log_level"],
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    logger.info(f"Saved settings to {config_path}")


# Example configuration template
EXAMPLE_CONFIG = """# Process Gatherer configuration

database:
  # Local SQLite file holding processes, steps and attached files
  path: ~/.gatherer/gatherer.db

sync:
  # Remote process service. Leave empty to work offline only.
  api_base: ""
  request_timeout: 10

# Undo snapshots kept per editing session
history_limit: 50

log_level: info
"""


def write_example_config(config_path: Path) -> None:
    """Write an example configuration file."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(EXAMPLE_CONFIG)
    logger.info(f"Wrote example configuration to {config_path}")
