"""
Configuration management for the coin ledger service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str
    busy_timeout_ms: int


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_token_path: str
    timeout_seconds: int


class PaymentGatewayConfig(BaseModel):
    """Payment gateway connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    confirm_deposit_path: str
    timeout_seconds: int


class WithdrawalsConfig(BaseModel):
    """Withdrawal policy configuration."""

    model_config = ConfigDict(extra="forbid")
    minimum_coins: int


class TopUpsConfig(BaseModel):
    """Deposit conversion configuration."""

    model_config = ConfigDict(extra="forbid")
    coins_per_cash_unit: int


class RequestConfig(BaseModel):
    """Request validation configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    payment_gateway: PaymentGatewayConfig
    withdrawals: WithdrawalsConfig
    top_ups: TopUpsConfig
    request: RequestConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and validate settings from the YAML configuration file.

    Raises:
        FileNotFoundError: If the configuration file does not exist
        pydantic.ValidationError: If a field is missing, unknown, or mistyped
    """
    config_path = get_config_path()
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open(encoding="utf-8") as config_file:
        raw: Any = yaml.safe_load(config_file)

    if not isinstance(raw, dict):
        msg = f"Configuration file must contain a mapping: {config_path}"
        raise ValueError(msg)

    return Settings.model_validate(raw)


def clear_settings_cache() -> None:
    """Forget cached settings so the next call re-reads the file."""
    get_settings.cache_clear()
