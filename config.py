"""
Configuration loading for the batch tool.

Configuration comes either from a YAML file (given explicitly or found in
the default locations) or from command line flags, never both.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from core.constants import BatchConstants
from schemas import Config, ProfileConfig

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration cannot be found, parsed or validated"""


def load_config(path: str) -> Config:
    """
    Load and validate a YAML configuration file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated configuration
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"{path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ConfigError(f"{path}: config file must contain a YAML mapping")

    try:
        config = Config.model_validate(dict(payload))
    except ValidationError as e:
        raise ConfigError(f"{path}: {e}") from e

    logger.debug(f"Loaded config {path} with {len(config.profiles)} profiles")
    return config


def default_config_paths(home: Optional[str] = None) -> List[str]:
    """Config file locations searched when none is given, in order"""
    home_dir = Path(home) if home is not None else Path.home()
    return list(BatchConstants.CONFIG_FILENAMES) + [
        str(home_dir / name) for name in BatchConstants.HOME_CONFIG_FILENAMES
    ]


def find_config(home: Optional[str] = None) -> Optional[str]:
    """
    Find the first existing default config file.

    Args:
        home: Home directory, defaults to the current user's

    Returns:
        Path of the config file, or None when there is none
    """
    for path in default_config_paths(home):
        if os.path.isfile(path):
            return path
    return None


def cli_config(
    output: str,
    format: str,
    rewrite: bool,
    width: int,
    height: int,
    input_profile: str,
    output_profile: str,
) -> Config:
    """Config with a single "thumbnail" profile keeping the input type"""
    return Config(
        output=output,
        format=format,
        rewrite=rewrite,
        profiles={
            BatchConstants.CLI_PROFILE_NAME: ProfileConfig(
                width=width,
                height=height,
                input_profile=input_profile,
                output_profile=output_profile,
                type=BatchConstants.SAME_TYPE,
            )
        },
    )


def resolve_config(
    config_path: Optional[str],
    cli: Optional[Config],
    home: Optional[str] = None,
) -> Config:
    """
    Pick the configuration to run with.

    Args:
        config_path: Path given with --config, if any
        cli: Config built from command line flags, if any were given
        home: Home directory for the default search

    Returns:
        Configuration to use
    """
    if config_path:
        if cli is not None:
            raise ConfigError("either external or cli config should be present, not both")
        return load_config(config_path)

    if cli is not None:
        return cli

    path = find_config(home)
    if path is None:
        searched = ", ".join(default_config_paths(home))
        raise ConfigError(f"no config found, searched at: {searched}")

    logger.info(f"Using config {path}")
    return load_config(path)
