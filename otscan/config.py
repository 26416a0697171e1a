from __future__ import annotations

import argparse
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from otscan.log import get_logger

logger = get_logger("config")

DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
DEFAULT_POLL_INTERVAL = 3.0


def load_config() -> Dict[str, Any]:
    """
    Load configuration from:
    1. ~/.otscan.toml
    2. ./otscan.toml

    Later files override earlier ones.  Returns a dictionary of
    configuration values.
    """
    paths = [
        Path.home() / ".otscan.toml",
        Path("otscan.toml"),
    ]

    config: Dict[str, Any] = {}
    for path in paths:
        if path.exists():
            try:
                with path.open("rb") as f:
                    _deep_update(config, tomllib.load(f))
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.warning("failed to load config %s: %s", path, e)

    return config


def _deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and key in target and isinstance(target[key], dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


def apply_config(parser: argparse.ArgumentParser, config: Dict[str, Any]) -> None:
    """
    Apply configuration values to the argument parser defaults.

    Example config:
    [global]
    base_url = "http://scanner.lab:8000"

    [scan]
    poll_interval = 5.0

    Every section is flattened onto the parser's defaults; ``global`` is
    applied first so section values win.
    """
    defaults: Dict[str, Any] = {}

    if "global" in config:
        defaults.update(config["global"])

    for section, values in config.items():
        if section == "global":
            continue
        if isinstance(values, dict):
            defaults.update(values)

    parser.set_defaults(**defaults)


class BackendSettings(BaseModel):
    base_url: str = DEFAULT_BACKEND_URL
    timeout: float = 10.0
    start_path: str = "/api/scan/start"
    status_path: str = "/api/scan/status/{task_id}"


class ScanSettings(BaseModel):
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    mode: str = "full"
    external_api_key: Optional[str] = None
    clear_on_failure: bool = True


class WebSettings(BaseModel):
    api_key: Optional[str] = None


class NotificationSettings(BaseModel):
    enabled: bool = False
    webhook_url: Optional[str] = None
    slack_webhook: Optional[str] = None
    discord_webhook: Optional[str] = None


class Settings(BaseModel):
    backend: BackendSettings = Field(default_factory=BackendSettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    web: WebSettings = Field(default_factory=WebSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "Settings":
        if config is None:
            config = load_config()
        sections = {
            name: config[name]
            for name in ("backend", "scan", "web", "notifications")
            if isinstance(config.get(name), dict)
        }
        return cls.model_validate(sections)
