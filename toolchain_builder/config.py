#!/usr/bin/env python3

import os
import json
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import logging
import sys

from .errors import ConfigError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr) # Default to stderr
    ]
)
logger = logging.getLogger("toolchain_builder")

SUPPORTED_ARCHITECTURES = ("x86_64", "i686")


def get_config_path():
    """Get the path to the configuration file.

    Checks in order:
    1. TOOLCHAIN_BUILDER_CONFIG environment variable
    2. ~/.toolchain-builder/ directory
    """
    if 'TOOLCHAIN_BUILDER_CONFIG' in os.environ:
        path = Path(os.environ['TOOLCHAIN_BUILDER_CONFIG'])
        if path.exists():
            return path

    config_dir = Path.home() / '.toolchain-builder'
    for filename in ['config.json', 'config.toml', 'config.yaml', 'config.yml']:
        path = config_dir / filename
        if path.exists() and path.stat().st_size > 0:
            return path

    # If no file exists, return default path for saving
    return config_dir / 'config.json'


def get_default_config():
    """Get default configuration."""
    return {
        "repository": {
            "url": "http://repo.msys2.org/mingw",
            "name": "mingw64",
            "arch": "x86_64",
            "timeout_seconds": 30,
        },
        "extract": {
            "output": "./",
            "parallelism": None,  # None = number of CPUs
            "exclude": [],
            "include": [],
        },
        "logging": {
            "level": "INFO",
        },
    }


def load_config(config_path: Optional[Path] = None):
    """Load configuration from file.

    Raises:
        ConfigError: If the config file exists but can't be parsed
    """
    config_path = Path(config_path) if config_path else get_config_path()

    config = get_default_config()

    if config_path.exists():
        try:
            if config_path.suffix.lower() in ['.toml']:
                with open(config_path, 'rb') as f:
                    file_config = tomllib.load(f)
            elif config_path.suffix.lower() in ['.yaml', '.yml']:
                import yaml
                with open(config_path, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            else:
                with open(config_path, 'r') as f:
                    file_config = json.load(f)
        except Exception as e:
            raise ConfigError(f"Error loading config from {config_path}: {e}") from e

        if not isinstance(file_config, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")
        config = merge_configs(config, file_config)
        logger.debug(f"Loaded configuration from {config_path}")

    config = apply_env_overrides(config)

    return config


def merge_configs(base_config, override_config):
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config (dict): Base configuration
        override_config (dict): Configuration to merge/override with

    Returns:
        dict: Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def apply_env_overrides(config):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: TOOLCHAIN_BUILDER_SECTION_KEY
    For example: TOOLCHAIN_BUILDER_EXTRACT_PARALLELISM=4
    """
    env_prefix = "TOOLCHAIN_BUILDER_"

    for env_key, value in os.environ.items():
        if not env_key.startswith(env_prefix):
            continue

        key_parts = env_key[len(env_prefix):].lower().split('_')

        # Convert value
        if value.lower() in ('true', 'yes', 'on'):
            typed_value = True
        elif value.lower() in ('false', 'no', 'off'):
            typed_value = False
        elif value.isdigit():
            typed_value = int(value)
        else:
            typed_value = value

        current_level = config
        i = 0
        while i < len(key_parts):
            # Find the longest key in current_level that is a prefix of the remaining key_parts
            best_match_len = 0
            matched_key = None

            for config_key in current_level.keys():
                config_key_parts_from_key = config_key.split('_')
                if key_parts[i : i + len(config_key_parts_from_key)] == config_key_parts_from_key:
                    if len(config_key_parts_from_key) > best_match_len:
                        best_match_len = len(config_key_parts_from_key)
                        matched_key = config_key

            if matched_key:
                if i + best_match_len == len(key_parts):
                    # Comma-separated values for list settings (exclude/include)
                    if isinstance(current_level[matched_key], list) and isinstance(typed_value, str):
                        typed_value = [v for v in typed_value.split(',') if v]
                    current_level[matched_key] = typed_value
                    break

                if isinstance(current_level[matched_key], dict):
                    current_level = current_level[matched_key]
                    i += best_match_len
                else:
                    break
            else:
                break

    return config


@dataclass(frozen=True)
class RunConfig:
    """Validated settings for a single run."""
    package: str
    repository_url: str
    repository_name: str
    architecture: str
    output: Path
    parallelism: int
    exclude: tuple = ()
    include: tuple = ()
    timeout_seconds: Optional[float] = None


def default_parallelism() -> int:
    """Number of processing units on the host."""
    return os.cpu_count() or 1


def build_run_config(
    config: Dict[str, Any],
    package: str,
    repository_url: Optional[str] = None,
    repository_name: Optional[str] = None,
    architecture: Optional[str] = None,
    output: Optional[str] = None,
    parallelism: Optional[int] = None,
    exclude: Sequence[str] = (),
    include: Sequence[str] = (),
) -> RunConfig:
    """
    Combine loaded configuration with command-line overrides.

    CLI values win over config values. Exclude/include patterns given on
    the command line replace those from the config file.

    Raises:
        ConfigError: On an unknown architecture or non-positive parallelism
    """
    repo_cfg = config.get("repository", {})
    extract_cfg = config.get("extract", {})

    arch = architecture or repo_cfg.get("arch", "x86_64")
    if arch not in SUPPORTED_ARCHITECTURES:
        raise ConfigError(f'Unknown architecture: "{arch}"')

    if parallelism is None:
        parallelism = extract_cfg.get("parallelism")
    if parallelism is None:
        parallelism = default_parallelism()
    try:
        parallelism = int(parallelism)
    except (TypeError, ValueError):
        raise ConfigError(f"Parallelism must be an integer, got {parallelism!r}")
    if parallelism < 1:
        raise ConfigError(f"Parallelism must be positive, got {parallelism}")

    if not package:
        raise ConfigError("Package name is required")

    return RunConfig(
        package=package,
        repository_url=repository_url or repo_cfg.get("url", ""),
        repository_name=repository_name or repo_cfg.get("name", ""),
        architecture=arch,
        output=Path(output or extract_cfg.get("output", "./")).expanduser(),
        parallelism=parallelism,
        exclude=tuple(exclude or extract_cfg.get("exclude", ())),
        include=tuple(include or extract_cfg.get("include", ())),
        timeout_seconds=repo_cfg.get("timeout_seconds"),
    )
