"""
Configuration loading and management for the ETF investing assistant.

This module handles loading the application configuration from YAML files,
environment overrides (via .env), and validation of configuration parameters.
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from etf_pilot.errors import EtfPilotError
from etf_pilot.models import AppConfig, ImportFilterConfig, QuoteConfig, StrategyConfig


# Environment variables that override file settings
ENV_DATA_DIR = "ETF_PILOT_DATA_DIR"
ENV_OWNER_ID = "ETF_PILOT_OWNER_ID"


class ConfigurationError(EtfPilotError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


def load_config(
    config_path: Optional[str | Path] = None,
    env_file: Optional[str | Path] = None,
) -> AppConfig:
    """
    Load the application configuration.

    Settings come from the YAML file (all keys optional), then from a .env
    file and the process environment, which take priority.

    Args:
        config_path: Path to the YAML file; defaults only when None
        env_file: Path to a .env file (default: search from the working directory)

    Returns:
        AppConfig with validated settings

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    raw: dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

        if not isinstance(raw, dict):
            raise ConfigurationError("Configuration file must contain a mapping")

    config = _parse_config(raw)
    return _apply_env_overrides(config, env_file)


def _apply_env_overrides(config: AppConfig, env_file: Optional[str | Path]) -> AppConfig:
    """Apply ETF_PILOT_* overrides from .env and the environment."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv(find_dotenv(usecwd=True))

    if os.environ.get(ENV_DATA_DIR):
        config.data_dir = os.environ[ENV_DATA_DIR]
    if os.environ.get(ENV_OWNER_ID):
        config.owner_id = os.environ[ENV_OWNER_ID]

    return config


def _parse_config(raw: dict[str, Any]) -> AppConfig:
    """
    Parse and validate raw configuration dictionary into AppConfig.

    Args:
        raw: Dictionary loaded from YAML

    Returns:
        Validated AppConfig

    Raises:
        ConfigurationError: If fields are invalid
    """
    owner_id = str(raw.get("owner_id", "default_user"))
    if not owner_id:
        raise ConfigurationError("owner_id cannot be empty")

    strategy_raw = _section(raw, "strategy")
    strategy = StrategyConfig(
        max_rank_to_consider=_parse_int(
            strategy_raw.get("max_rank_to_consider", 5), "max_rank_to_consider", min_val=1
        ),
        averaging_loss_threshold=_parse_decimal(
            strategy_raw.get("averaging_loss_threshold", "-2.5"),
            "averaging_loss_threshold",
            max_val=Decimal("0"),
        ),
        profit_threshold=_parse_decimal(
            strategy_raw.get("profit_threshold", "6.0"),
            "profit_threshold",
            min_val=Decimal("0"),
        ),
        default_quantity=_parse_int(
            strategy_raw.get("default_quantity", 1), "default_quantity", min_val=1
        ),
    )

    filters_raw = _section(raw, "import_filters")
    import_filters = ImportFilterConfig(
        volume_filter=_parse_int(filters_raw.get("volume_filter", 100000), "volume_filter", min_val=0),
        top_per_category=_parse_int(filters_raw.get("top_per_category", 3), "top_per_category", min_val=0),
        exclude_liquid=_parse_bool(filters_raw.get("exclude_liquid", True), "exclude_liquid"),
        dma_estimate_ratio=_parse_decimal(
            filters_raw.get("dma_estimate_ratio", "0.98"),
            "dma_estimate_ratio",
            min_val=Decimal("0"),
            max_val=Decimal("1"),
        ),
    )

    quotes_raw = _section(raw, "quotes")
    quotes = QuoteConfig(
        exchange_suffix=str(quotes_raw.get("exchange_suffix", ".NS")),
        dma_window=_parse_int(quotes_raw.get("dma_window", 20), "dma_window", min_val=1),
    )

    return AppConfig(
        owner_id=owner_id,
        data_dir=str(raw.get("data_dir", "data")),
        log_dir=str(raw.get("log_dir", "output")),
        strategy=strategy,
        import_filters=import_filters,
        quotes=quotes,
    )


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{name} must be a mapping")
    return value


def _parse_decimal(
    value: Any,
    field_name: str,
    min_val: Decimal | None = None,
    max_val: Decimal | None = None,
) -> Decimal:
    """
    Parse a decimal value with optional range validation.

    Args:
        value: The value to parse
        field_name: Name of the field for error messages
        min_val: Minimum allowed value (inclusive)
        max_val: Maximum allowed value (inclusive)

    Returns:
        Parsed Decimal

    Raises:
        ConfigurationError: If the value is invalid or out of range
    """
    try:
        decimal_value = Decimal(str(value))
    except Exception:
        raise ConfigurationError(f"Invalid decimal value for {field_name}: {value}")

    if not decimal_value.is_finite():
        raise ConfigurationError(f"Invalid decimal value for {field_name}: {value}")

    if min_val is not None and decimal_value < min_val:
        raise ConfigurationError(
            f"{field_name} must be >= {min_val}, got {decimal_value}"
        )

    if max_val is not None and decimal_value > max_val:
        raise ConfigurationError(
            f"{field_name} must be <= {max_val}, got {decimal_value}"
        )

    return decimal_value


def _parse_int(value: Any, field_name: str, min_val: int | None = None) -> int:
    """Parse an integer value with an optional lower bound."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid integer value for {field_name}: {value}")
    try:
        int_value = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid integer value for {field_name}: {value}")

    if min_val is not None and int_value < min_val:
        raise ConfigurationError(f"{field_name} must be >= {min_val}, got {int_value}")

    return int_value


def _parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "yes", "1"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "no", "0"):
        return False
    raise ConfigurationError(f"Invalid boolean value for {field_name}: {value}")


def write_config(config: AppConfig, output_path: str | Path) -> None:
    """
    Write an AppConfig to a YAML file.

    Args:
        config: The configuration to write
        output_path: Path to write the YAML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = {
        "owner_id": config.owner_id,
        "data_dir": config.data_dir,
        "log_dir": config.log_dir,
        "strategy": {
            "max_rank_to_consider": config.strategy.max_rank_to_consider,
            "averaging_loss_threshold": str(config.strategy.averaging_loss_threshold),
            "profit_threshold": str(config.strategy.profit_threshold),
            "default_quantity": config.strategy.default_quantity,
        },
        "import_filters": {
            "volume_filter": config.import_filters.volume_filter,
            "top_per_category": config.import_filters.top_per_category,
            "exclude_liquid": config.import_filters.exclude_liquid,
            "dma_estimate_ratio": str(config.import_filters.dma_estimate_ratio),
        },
        "quotes": {
            "exchange_suffix": config.quotes.exchange_suffix,
            "dma_window": config.quotes.dma_window,
        },
    }

    with open(output_path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
