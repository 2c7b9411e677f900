"""Configuration management for the Chunkup CLI."""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from common.constants import DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_CONCURRENCY, HTTP_TIMEOUT_SECONDS, MAX_RETRIES
from common.logging_config import get_logger

logger = get_logger(__name__)


class Config:
    """Manages CLI configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "server_host": os.environ.get("CHUNKUP_SERVER_HOST", "localhost"),
        "server_port": int(os.environ.get("CHUNKUP_SERVER_PORT", "8000")),
        "timeout": HTTP_TIMEOUT_SECONDS,
        "chunk_size": DEFAULT_CHUNK_SIZE_BYTES,
        "concurrency": DEFAULT_CONCURRENCY,
        "max_retries": MAX_RETRIES,
        "database_path": str(Path.home() / '.chunkup' / 'state.db'),
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.chunkup/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            self.config_path = Path(tempfile.gettempdir()) / '.chunkup' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Unreadable config {self.config_path}, using defaults: {e}")
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError as copy_error:
                    logger.debug(f"Could not back up config: {copy_error}")
                return self.DEFAULT_CONFIG.copy()

        config = self.DEFAULT_CONFIG.copy()
        try:
            with open(self.config_path, 'w') as f:
                json.dump(config, f, indent=2)
        except IOError as e:
            logger.debug(f"Could not write default config: {e}")
        return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not save config to {self.config_path}: {e}")

    def get_api_key(self) -> Optional[str]:
        return self.data.get('api_key')

    def set_api_key(self, key: str) -> None:
        """
        Set API key and save to file.

        Args:
            key: Bearer token sent with every upload request
        """
        self.data['api_key'] = key
        self.save()

    def get_base_url(self) -> str:
        """
        Get upload server base URL.

        An explicit ``server_url`` entry wins over host and port.

        Returns:
            Base URL string (e.g., "http://localhost:8000")
        """
        if self.data.get('server_url'):
            return self.data['server_url']
        host = self.data.get('server_host', 'localhost')
        port = self.data.get('server_port', 8000)
        return f"http://{host}:{port}"

    def get_timeout(self) -> float:
        return float(self.data.get('timeout', HTTP_TIMEOUT_SECONDS))

    def get_database_path(self) -> Path:
        return Path(self.data.get('database_path', self.DEFAULT_CONFIG['database_path'])).expanduser()

    def get_upload_config(self) -> dict:
        """
        Get chunking and scheduling settings.

        Returns:
            Dictionary with 'chunk_size', 'concurrency' and 'max_retries'
        """
        return {
            'chunk_size': int(self.data.get('chunk_size', DEFAULT_CHUNK_SIZE_BYTES)),
            'concurrency': int(self.data.get('concurrency', DEFAULT_CONCURRENCY)),
            'max_retries': int(self.data.get('max_retries', MAX_RETRIES)),
        }
