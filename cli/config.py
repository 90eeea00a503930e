"""Configuration management for the chunksync CLI."""

import json
import os
import shutil
from pathlib import Path
from typing import Optional

from common.constants import (
    DEFAULT_HASH_ALGORITHM,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_WORKERS,
)
from common.logging_config import get_logger
from cli.constants import CONFIG_DIR_NAME, CONFIG_FILE_NAME

logger = get_logger(__name__)

ENV_OVERRIDES = {
    "store_path": "CHUNKSYNC_STORE_PATH",
    "repository": "CHUNKSYNC_REPOSITORY",
}


def default_config_path() -> Path:
    return Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME


class Config:
    """Manages CLI configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "store_path": str(Path.home() / CONFIG_DIR_NAME / "store"),
        "repository": "",
        "workers": DEFAULT_WORKERS,
        "timeout": 30,
        "max_retries": DEFAULT_MAX_RETRIES,
        "retry_backoff": DEFAULT_RETRY_BACKOFF_SECONDS,
        "hash_algorithm": DEFAULT_HASH_ALGORITHM,
        "compression": "none",
        "server_host": DEFAULT_SERVER_HOST,
        "server_port": DEFAULT_SERVER_PORT,
    }

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.chunksync/config.json)
        """
        self.config_path = Path(config_path) if config_path is not None else default_config_path()
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Environment overrides are applied on top but never written back.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            import tempfile
            self.config_path = Path(tempfile.gettempdir()) / CONFIG_DIR_NAME / CONFIG_FILE_NAME
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config = self.DEFAULT_CONFIG.copy()
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be an object")
                config.update(data)
            except (ValueError, OSError) as e:
                backup_path = self.config_path.with_suffix('.json.bak')
                logger.warning(f"Corrupt config {self.config_path} ({e}), backing up to {backup_path}")
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError as copy_error:
                    logger.warning(f"Could not back up config: {copy_error}")
                config = self.DEFAULT_CONFIG.copy()
        else:
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except OSError as e:
                logger.debug(f"Could not write default config: {e}")

        for key, env_var in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                config[key] = value
        return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not save config to {self.config_path}: {e}")

    def get_store_path(self) -> Path:
        """
        Get local content store directory.

        Returns:
            Expanded store path
        """
        return Path(self.data.get('store_path', self.DEFAULT_CONFIG['store_path'])).expanduser()

    def get_repository(self) -> str:
        """
        Get repository location (http(s):// URL or directory path).

        Returns:
            Location string, empty if unset
        """
        return self.data.get('repository') or ""

    def set_repository(self, location: str) -> None:
        self.data['repository'] = location
        self.save()

    def get_workers(self) -> int:
        return int(self.data.get('workers', DEFAULT_WORKERS))

    def get_timeout(self) -> int:
        """
        Get request timeout in seconds.

        Returns:
            Timeout value in seconds
        """
        return self.data.get('timeout', 30)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration.

        Returns:
            Dictionary with 'max_retries' and 'retry_backoff'
        """
        return {
            'max_retries': int(self.data.get('max_retries', DEFAULT_MAX_RETRIES)),
            'retry_backoff': float(self.data.get('retry_backoff', DEFAULT_RETRY_BACKOFF_SECONDS)),
        }

    def get_hash_algorithm(self) -> str:
        return self.data.get('hash_algorithm', DEFAULT_HASH_ALGORITHM)

    def get_compression(self) -> str:
        return self.data.get('compression', 'none')

    def get_server_address(self) -> tuple[str, int]:
        """
        Get bind address for 'serve'.

        Returns:
            Tuple of (host, port)
        """
        return (
            self.data.get('server_host', DEFAULT_SERVER_HOST),
            int(self.data.get('server_port', DEFAULT_SERVER_PORT)),
        )
