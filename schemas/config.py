"""
Batch configuration models.

This module contains models for the YAML configuration file:
- Output profiles (geometry, ICC profiles, encoder settings)
- Top-level batch settings
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from core.constants import BatchConstants, SystemConstants


class ProfileConfig(BaseModel):
    """One output rendition of every input image"""

    width: int = Field(0, description="Target width, 0 to follow height")
    height: int = Field(0, description="Target height, 0 to follow width")
    input_profile: str = Field("", description="Profile assumed for images without one")
    output_profile: str = Field("", description="Profile of the output, defaults to input")
    type: str = Field(
        BatchConstants.SAME_TYPE, description="Output type: jpeg, png, tiff, webp or same"
    )
    quality: int = Field(0, description="JPEG/WebP quality, 0 for the default")
    compression: int = Field(0, description="PNG compression level, 0 for the default")

    @field_validator("input_profile", "output_profile", "type", mode="before")
    @classmethod
    def empty_string_for_null(cls, v: Optional[str]) -> str:
        return "" if v is None else v

    @field_validator("width", "height", "quality", "compression", mode="before")
    @classmethod
    def zero_for_null(cls, v: Optional[int]) -> int:
        return 0 if v is None else v


class Config(BaseModel):
    """Batch settings loaded from YAML or built from the command line"""

    output: str = Field(BatchConstants.DEFAULT_OUTPUT, description="Output root directory")
    format: str = Field(
        BatchConstants.DEFAULT_FORMAT, description="Output name template with {name} and {profile}"
    )
    rewrite: bool = Field(False, description="Overwrite existing output files")
    profiles: Dict[str, ProfileConfig] = Field(default_factory=dict)
    log_level: str = Field(SystemConstants.LOG_LEVEL_DEFAULT, description="Logging level name")

    @field_validator("output", mode="before")
    @classmethod
    def default_output(cls, v: Optional[str]) -> str:
        return v or BatchConstants.DEFAULT_OUTPUT

    @field_validator("format", mode="before")
    @classmethod
    def default_format(cls, v: Optional[str]) -> str:
        return v or BatchConstants.DEFAULT_FORMAT

    @field_validator("profiles", mode="before")
    @classmethod
    def empty_profiles(cls, v):
        """A bare `profiles:` key means no profiles"""
        if v is None:
            return {}
        if isinstance(v, dict):
            return {name: {} if profile is None else profile for name, profile in v.items()}
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level
