"""
Consumer configuration.

The host passes a plain mapping to initialize(). Scripts can also load
the same keys from a YAML file, with environment overrides.
"""

import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Mapping, Optional, Union
import structlog
import yaml

logger = structlog.get_logger(__name__)

DEFAULT_DB_PATH = "soroswap_pairs.sqlite"
DEFAULT_PROCESS_TIMEOUT = 30.0
DEFAULT_BUSY_TIMEOUT = 5.0

ENV_DB_PATH = "SOROSWAP_PAIRS_DB_PATH"
ENV_PROCESS_TIMEOUT = "SOROSWAP_PAIRS_PROCESS_TIMEOUT"


def _positive_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value) if value > 0 else default


@dataclass
class ConsumerConfig:
    """Options recognized by SaveSoroswapPairsToSQLite.initialize()."""
    db_path: str = DEFAULT_DB_PATH
    process_timeout: float = DEFAULT_PROCESS_TIMEOUT
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "ConsumerConfig":
        """
        Build config from the host's option map.

        Missing or wrong-typed values fall back to defaults.
        """
        config = config or {}

        db_path = config.get("db_path")
        if not isinstance(db_path, str) or not db_path:
            db_path = DEFAULT_DB_PATH

        return cls(
            db_path=db_path,
            process_timeout=_positive_float(config.get("process_timeout"), DEFAULT_PROCESS_TIMEOUT),
            busy_timeout=_positive_float(config.get("busy_timeout"), DEFAULT_BUSY_TIMEOUT),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}

    db_path = os.environ.get(ENV_DB_PATH)
    if db_path:
        overrides["db_path"] = db_path

    timeout = os.environ.get(ENV_PROCESS_TIMEOUT)
    if timeout:
        try:
            overrides["process_timeout"] = float(timeout)
        except ValueError:
            logger.warning("invalid_env_value", name=ENV_PROCESS_TIMEOUT, value=timeout)

    return overrides


def load_config(path: Optional[Union[str, Path]] = None) -> dict[str, Any]:
    """
    Load the consumer option map from YAML.

    The file may hold the options at top level or under a "consumer"
    key. A missing file falls back to defaults. Environment variables
    win over the file.
    """
    options: dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            logger.warning("config_not_found_using_defaults", path=str(path))
        else:
            with open(config_path) as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"config file {path} must contain a mapping")
            section = raw.get("consumer", raw)
            if not isinstance(section, dict):
                raise ValueError(f"'consumer' section in {path} must be a mapping")
            options.update(section)
            logger.info("config_loaded", path=str(path))

    options.update(_env_overrides())
    return ConsumerConfig.from_mapping(options).to_dict()
