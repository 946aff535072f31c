"""
Configuration Loader

Handles loading and saving the local cluster config as a JSON document.
The whole document is rewritten on every save.
"""

import json
import os
import tempfile
from typing import Dict, Any, Optional

from loguru import logger

from .types import BootstrapConfig, DEFAULT_CONFIG_PATH, expand_home_dir


CONFIG_PATH_ENV = "CLUSTER_BOOTSTRAP_CONFIG"


def default_config_path() -> str:
    """Config path from the environment, falling back to the per-user default"""
    return expand_home_dir(os.getenv(CONFIG_PATH_ENV, "").strip() or DEFAULT_CONFIG_PATH)


class ConfigLoader:
    """Loads and saves the local cluster config"""

    @staticmethod
    def load_from_file(config_path: Optional[str] = None) -> BootstrapConfig:
        """
        Load the config from a JSON file.

        A missing file yields an empty config bound to that path, so the
        first successful init creates it.

        Raises:
            ValueError: If the file exists but is not a valid config
        """
        config_path = expand_home_dir(config_path) if config_path else default_config_path()
        if not os.path.exists(config_path):
            logger.debug(f"Config file {config_path} does not exist, starting with an empty config")
            return BootstrapConfig(path=config_path)

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid config file {config_path}: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Invalid config file {config_path}: expected a JSON object")

        return ConfigLoader.from_dict(data, config_path)

    @staticmethod
    def from_dict(data: Dict[str, Any], config_path: Optional[str] = None) -> BootstrapConfig:
        """Create BootstrapConfig from a dictionary"""
        return BootstrapConfig.from_dict(data, path=config_path)

    @staticmethod
    def to_dict(config: BootstrapConfig) -> Dict[str, Any]:
        """Convert BootstrapConfig to a dictionary"""
        return config.to_dict()

    @staticmethod
    def save_to_file(config: BootstrapConfig, config_path: Optional[str] = None) -> None:
        """Save the config to a JSON file, replacing the previous document atomically"""
        config_path = config_path or config.path
        if not config_path:
            raise ValueError("Config has no file path to save to")

        data = ConfigLoader.to_dict(config)

        # Ensure directory exists
        directory = os.path.dirname(config_path) or "."
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".config-", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, config_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"Config saved to {config_path}")
