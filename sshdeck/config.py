"""
Configuration Manager for sshdeck
Handles application settings such as file locations and backup retention
"""

import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

from .atomic import atomic_write
from .backup_manager import MAX_BACKUPS
from .platform_utils import get_config_dir, get_ssh_dir
from .server_sort import DEFAULT_SERVER_SORT, SERVER_SORT_PRESETS

logger = logging.getLogger(__name__)

# Increment this whenever the configuration format changes
CONFIG_VERSION = 1


class Config:
    """Configuration manager for sshdeck"""

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or os.path.join(get_config_dir(), 'config.json')
        self.config_data = self.load_json_config()

    def load_json_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    config = json.load(f)
                if not isinstance(config, dict):
                    raise ValueError("configuration root must be a JSON object")

                # Purge outdated configurations
                stored_version = config.get('config_version', 0)
                if not isinstance(stored_version, int) or stored_version < CONFIG_VERSION:
                    backup_file = f"{self.config_file}.bak"
                    os.replace(self.config_file, backup_file)
                    logger.warning(
                        "Outdated config version %s detected; backing up to %s and regenerating defaults",
                        stored_version,
                        backup_file,
                    )
                    config = self.get_default_config()
                    self.save_json_config(config)
                else:
                    config, updated = self._ensure_config_defaults(config)
                    if updated:
                        self.save_json_config(config)
                return config
            else:
                default_config = self.get_default_config()
                self.save_json_config(default_config)
                return default_config
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load JSON config: {e}")
            return self.get_default_config()

    def save_json_config(self, config_data: Dict[str, Any] = None):
        """Save configuration to JSON file"""
        if config_data is None:
            config_data = self.config_data
        try:
            data = json.dumps(config_data, indent=2).encode('utf-8') + b'\n'
            atomic_write(self.config_file, data, 0o600)
            logger.debug("Configuration saved to JSON file")
        except OSError as e:
            logger.error(f"Failed to save JSON config: {e}")

    def get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values"""
        return {
            'config_version': CONFIG_VERSION,
            'ssh': {
                'config_path': os.path.join(get_ssh_dir(), 'config'),
            },
            'storage': {
                'metadata_path': os.path.join(get_config_dir(), 'metadata.json'),
                'password_path': os.path.join(get_config_dir(), 'passwords.json'),
            },
            'backups': {
                'max_backups': MAX_BACKUPS,
            },
            'ui': {
                'sort': DEFAULT_SERVER_SORT,
            },
        }

    def get_setting(self, key: str, default=None):
        """Get a setting value using a dotted key such as ``ssh.config_path``"""
        value = self.config_data
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set_setting(self, key: str, value: Any):
        """Set a setting value and persist the configuration"""
        keys = key.split('.')
        current = self.config_data
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]
        current[keys[-1]] = value
        self.save_json_config()
        logger.debug(f"Setting {key} = {value}")

    def _path_setting(self, key: str) -> str:
        value = self.get_setting(key)
        if not isinstance(value, str) or not value.strip():
            value = self._default_for(key)
        return os.path.abspath(os.path.expanduser(os.path.expandvars(value)))

    def _default_for(self, key: str) -> Any:
        value = self.get_default_config()
        for k in key.split('.'):
            value = value[k]
        return value

    def get_ssh_config_path(self) -> str:
        return self._path_setting('ssh.config_path')

    def get_metadata_path(self) -> str:
        return self._path_setting('storage.metadata_path')

    def get_password_path(self) -> str:
        return self._path_setting('storage.password_path')

    def _ensure_config_defaults(self, config: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        """Ensure newly added keys exist in the provided config dict."""
        updated = False
        defaults = self.get_default_config()

        for section in ('ssh', 'storage', 'backups', 'ui'):
            if not isinstance(config.get(section), dict):
                config[section] = dict(defaults[section])
                updated = True
                continue
            for key, value in defaults[section].items():
                if key not in config[section]:
                    config[section][key] = value
                    updated = True

        max_backups = config['backups'].get('max_backups')
        if isinstance(max_backups, bool) or not isinstance(max_backups, int) or max_backups < 1:
            config['backups']['max_backups'] = MAX_BACKUPS
            updated = True

        if config['ui'].get('sort') not in SERVER_SORT_PRESETS:
            config['ui']['sort'] = DEFAULT_SERVER_SORT
            updated = True

        return config, updated
