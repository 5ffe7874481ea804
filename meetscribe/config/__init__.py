"""Simple YAML configuration loader for meetscribe."""

import os
import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List
import logging

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "registry": {
        "eviction_grace_seconds": 60.0,
    },
    "lifecycle": {
        "min_chunk_bytes_for_processing": 0,
        "reject_terminal_commands": True,
        "anonymous_speaker_labels": ["speaker_unknown"],
    },
    "events": {
        "max_workers": 4,
    },
    "transcription": {
        "default_provider": "mock",
    },
    "mock": {
        "processing_delay_seconds": 0.0,
    },
    "google_cloud": {
        "language": "en-US",
        "use_enhanced_model": True,
        "request_timeout_seconds": 30.0,
    },
    "storage": {
        "data_directory": "data",
        "archive_audio": False,
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/meetscribe.log",
        "console_output": True,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


class MeetscribeConfig:
    """meetscribe configuration loader."""

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, built-in defaults are used.
            overrides: Nested dict merged over the file values (handy for tests)
        """
        self.config_file = Path(config_path) if config_path else None
        self.config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_file is not None:
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

            logger.info(f"Loading configuration from: {self.config_file}")
            _deep_merge(self.config, self._load_config())

        if overrides:
            _deep_merge(self.config, copy.deepcopy(overrides))

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        if 'google_cloud' in config and 'credentials_path' in config['google_cloud']:
            creds_path = config['google_cloud']['credentials_path']
            if creds_path and not os.path.isabs(creds_path):
                config['google_cloud']['credentials_path'] = str(config_dir / creds_path)

        if 'storage' in config and 'data_directory' in config['storage']:
            data_dir = config['storage']['data_directory']
            if not os.path.isabs(data_dir):
                config['storage']['data_directory'] = str(config_dir / data_dir)

        if 'logging' in config and 'file_path' in config['logging']:
            log_path = config['logging']['file_path']
            if not os.path.isabs(log_path):
                config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'registry.eviction_grace_seconds').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'lifecycle.reject_terminal_commands')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_eviction_grace_seconds(self) -> float:
        grace = float(self.get('registry.eviction_grace_seconds', 60.0))
        if grace < 0:
            raise ValueError(f"registry.eviction_grace_seconds must be >= 0, got {grace}")
        return grace

    def get_min_chunk_bytes(self) -> int:
        min_bytes = int(self.get('lifecycle.min_chunk_bytes_for_processing', 0))
        if min_bytes < 0:
            raise ValueError(f"lifecycle.min_chunk_bytes_for_processing must be >= 0, got {min_bytes}")
        return min_bytes

    def reject_terminal_commands(self) -> bool:
        return bool(self.get('lifecycle.reject_terminal_commands', True))

    def get_anonymous_speaker_labels(self) -> List[str]:
        return list(self.get('lifecycle.anonymous_speaker_labels', []) or [])

    def get_google_credentials_path(self) -> Optional[str]:
        """Get Google credentials path, or None when not configured or missing on disk."""
        creds_path = self.get('google_cloud.credentials_path')
        if not creds_path:
            return None

        creds_file = Path(creds_path)
        if not creds_file.exists():
            logger.warning(f"Google credentials file not found: {creds_path}")
            return None

        return str(creds_file.absolute())

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())
