"""Configuration management for the query splitter."""

from dataclasses import dataclass, field
from typing import Optional
import yaml
from pathlib import Path


DEFAULT_COST_THRESHOLD = 1000.0


@dataclass
class PartitionerConfig:
    """Configuration for the plan partitioner."""

    cost_threshold: float = DEFAULT_COST_THRESHOLD


@dataclass
class CostConfig:
    """Configuration for cost model."""

    default_row_count: float = 100.0  # Used when no statistics were supplied
    default_selectivity: float = 0.1
    range_selectivity: float = 0.33
    default_group_ratio: float = 0.1  # groups per input row without key statistics


@dataclass
class RendererConfig:
    """Configuration for SQL rendering."""

    dialect: str = "postgres"
    pretty: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    structured: bool = False
    log_file: Optional[str] = None


@dataclass
class Config:
    """Main configuration class."""

    partitioner: PartitionerConfig = field(default_factory=PartitionerConfig)
    cost: CostConfig = field(default_factory=CostConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(config_path: str) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Parsed configuration

    Example YAML format:
        partitioner:
          cost_threshold: 5000.0

        cost:
          default_row_count: 100.0
          default_selectivity: 0.1

        renderer:
          dialect: duckdb
          pretty: false

        logging:
          level: DEBUG
          structured: true
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    partitioner = PartitionerConfig(**data.get("partitioner", {}))
    cost = CostConfig(**data.get("cost", {}))
    renderer = RendererConfig(**data.get("renderer", {}))
    logging_config = LoggingConfig(**data.get("logging", {}))

    return Config(
        partitioner=partitioner,
        cost=cost,
        renderer=renderer,
        logging=logging_config,
    )
