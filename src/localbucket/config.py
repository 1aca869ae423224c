"""Configuration loading and Pydantic models for localbucket."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class StoreConfig(BaseModel):
    """On-disk store configuration.

    An empty ``root`` means a fresh temporary directory is created at start.
    """

    root: str = ""
    retain_files_on_exit: bool = False
    initial_buckets: list[str] = Field(default_factory=list)
    region: str = "us-east-1"


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: str = "INFO"
    format: str = "text"


class ObservabilityConfig(BaseModel):
    """Metrics toggles."""

    metrics: bool = True


class LocalBucketConfig(BaseModel):
    """Top-level localbucket configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_store(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the store section from YAML data.

    Accepts ``initial_buckets`` either as a list or a comma separated string.
    """
    if data is None:
        return {}
    initial = data.get("initial_buckets", [])
    if isinstance(initial, str):
        initial = [name.strip() for name in initial.split(",") if name.strip()]
    return {
        "root": data.get("root", ""),
        "retain_files_on_exit": data.get("retain_files_on_exit", False),
        "initial_buckets": initial or [],
        "region": data.get("region", "us-east-1"),
    }


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return {}
    return {"metrics": data.get("metrics", True)}


def load_config(path: Path) -> LocalBucketConfig:
    """Load a LocalBucketConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated LocalBucketConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return LocalBucketConfig(
        store=StoreConfig(**_parse_store(raw.get("store"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
