"""
Schemas Package

This package contains the Pydantic schemas used to validate batch
configuration, whether read from YAML or built from command line flags.
"""

from .config import Config, ProfileConfig

__all__ = [
    "Config",
    "ProfileConfig",
]
