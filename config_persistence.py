import json
from dataclasses import asdict
from pathlib import Path

from config import (
    Config,
    apply_dict_to_dataclass,
    migrate_config,
    validate_config,
)
from errors import InvalidConfigurationError
from logging_utils import log_event


def get_config_dir() -> Path:
    """Get config directory (~/.tunebench), creating it when missing."""
    config_dir = Path.home() / '.tunebench'
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get config file path."""
    return get_config_dir() / 'config.json'


def get_programs_dir() -> Path:
    """Practice programs saved by name live here."""
    programs_dir = get_config_dir() / 'programs'
    programs_dir.mkdir(parents=True, exist_ok=True)
    return programs_dir


def resolve_program_path(name_or_path: str) -> Path:
    """An existing file path wins; otherwise look the name up in the programs dir."""
    candidate = Path(name_or_path)
    if candidate.exists():
        return candidate
    if candidate.suffix != '.json':
        candidate = candidate.with_name(candidate.name + '.json')
    return get_programs_dir() / candidate.name


def save_config(config: Config) -> bool:
    """Save config to JSON file."""
    try:
        config_file = get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(asdict(config), f, indent=2)
        log_event("INFO", "Config", "Saved", path=config_file)
        return True
    except (OSError, TypeError, ValueError) as e:
        log_event("ERROR", "Config", "Failed to save", error=e)
        return False


def load_config() -> Config:
    """Load config from JSON file.

    Missing, unreadable or unusable files all give the defaults; a file from an
    older schema is migrated and written back.
    """
    try:
        config_file = get_config_file()
        if not config_file.exists():
            log_event("INFO", "Config", "No saved config found, using defaults")
            return Config()

        with open(config_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("top level of config.json must be an object")

        config = Config()
        apply_dict_to_dataclass(config, data)
        loaded_version = data.get('version')
        migrate_config(config, loaded_version)
        validate_config(config)

        log_event("INFO", "Config", "Loaded", path=config_file, version=config.version)
        if loaded_version != config.version:
            save_config(config)
        return config
    except InvalidConfigurationError as e:
        log_event("WARN", "Config", "Saved settings are unusable, using defaults", error=e)
        return Config()
    except (OSError, ValueError) as e:
        log_event("WARN", "Config", "Failed to load, using defaults", error=e)
        return Config()
