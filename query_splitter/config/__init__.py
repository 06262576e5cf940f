"""Configuration management."""

from .config import (
    Config,
    PartitionerConfig,
    CostConfig,
    RendererConfig,
    LoggingConfig,
    DEFAULT_COST_THRESHOLD,
    load_config,
)

__all__ = [
    "Config",
    "PartitionerConfig",
    "CostConfig",
    "RendererConfig",
    "LoggingConfig",
    "DEFAULT_COST_THRESHOLD",
    "load_config",
]
