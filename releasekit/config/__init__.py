"""Configuration loading for ReleaseKit."""

from releasekit.config.parser import (
    CONFIG_FILE_NAME,
    BuildConfig,
    ReleaseConfig,
    RunOptions,
    load_config,
    parse_config,
)

__all__ = [
    "CONFIG_FILE_NAME",
    "BuildConfig",
    "ReleaseConfig",
    "RunOptions",
    "load_config",
    "parse_config",
]
