"""Configuration manager for ScholarAI CLI settings."""

import os
import json
from pathlib import Path
from typing import Dict, Any
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "openai_api_key": "",
    "log_level": "WARNING",
    "json_logs": False,
    "scholar_pages_per_chunk": 5,
    "scholar_ocr_page_limit": 20,
    "scholar_ocr_language": "eng",
    "scholar_fast_model": "gpt-4o-mini",
    "scholar_deep_model": "gpt-4o",
    "scholar_transcription_model": "whisper-1",
    "scholar_notes_file": "./notes.json",
    "scholar_object_store_dir": "./object_store"
}


class ScholarConfigManager:
    """Manage ScholarAI configuration settings with persistence."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "scholarai_cli.json"
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file."""
        config = dict(DEFAULT_CONFIG)

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    # Merge with defaults
                    config.update(json.load(f))
                logger.info("Configuration loaded from file")
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load config file: {e}, using defaults")
        else:
            logger.info("No config file found, using defaults")

        return config

    def _save_config(self):
        """Save configuration to file."""
        with open(self.config_file, 'w') as f:
            json.dump(self.config, f, indent=2)
        logger.info("Configuration saved to file")

    def apply_to_environment(self):
        """Export stored values the environment does not already define."""
        for key, value in self.config.items():
            if value in ("", None):
                continue
            os.environ.setdefault(key.upper(), _env_value(value))

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any, persist: bool = True):
        """Set configuration value."""
        self.config[key] = value

        # Update environment variable for immediate use
        os.environ[key.upper()] = _env_value(value)

        if persist:
            self._save_config()

        logger.info(f"Set {key}")

    def reset(self, key: str, persist: bool = True) -> bool:
        """Reset configuration value to default."""
        if key not in DEFAULT_CONFIG:
            logger.warning(f"No default value for {key}")
            return False

        self.set(key, DEFAULT_CONFIG[key], persist)
        logger.info(f"Reset {key} to default")
        return True

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self.config.copy()

    def validate(self) -> Dict[str, Any]:
        """Validate current configuration."""
        validation = {
            "valid": True,
            "issues": [],
            "warnings": []
        }

        if not (self.get("openai_api_key") or os.getenv("OPENAI_API_KEY")):
            validation["warnings"].append("OPENAI_API_KEY not set (required for model calls)")

        for key in ("scholar_pages_per_chunk", "scholar_ocr_page_limit"):
            try:
                if int(self.get(key)) < 1:
                    raise ValueError
            except (TypeError, ValueError):
                validation["issues"].append(f"{key} must be a positive integer")
                validation["valid"] = False

        return validation


def _env_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def get_config_manager() -> ScholarConfigManager:
    """Get the configuration manager for the current working directory."""
    config_dir = os.getenv("SCHOLAR_CONFIG_DIR", "./config")
    return ScholarConfigManager(config_dir)
