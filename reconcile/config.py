"""
Application configuration
=========================
Loads config/app_config.yml (or the file named by RECONCILE_CONFIG_PATH).
The 'database' section is read by DatabaseConfig in reconcile.db_utils;
everything else is exposed through the small settings dataclasses below.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'RECONCILE_CONFIG_PATH'
DEFAULT_CONFIG_PATH = 'config/app_config.yml'

STORE_BACKENDS = ('postgres', 'memory')


@dataclass
class IdentitySettings:
    """Concurrency knobs for the linking engine"""
    lock_timeout_seconds: float = 10.0
    max_key_rounds: int = 5


@dataclass
class StoreSettings:
    backend: str = 'postgres'


@dataclass
class LoggingSettings:
    level: str = 'INFO'
    file: Optional[str] = None


@dataclass
class AppSettings:
    config_path: str
    store: StoreSettings = field(default_factory=StoreSettings)
    identity: IdentitySettings = field(default_factory=IdentitySettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def get_config_path() -> str:
    return os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)


def _read_yaml(config_path: str) -> Dict[str, Any]:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def load_settings(config_path: Optional[str] = None) -> AppSettings:
    """
    Load application settings from YAML.

    Missing sections fall back to defaults; unknown keys are ignored.
    Raises ValueError for an unsupported store backend or non-positive limits.
    """
    config_path = config_path or get_config_path()
    raw = _read_yaml(config_path)

    store_raw = raw.get('store') or {}
    identity_raw = raw.get('identity') or {}
    logging_raw = raw.get('logging') or {}

    store = StoreSettings(backend=str(store_raw.get('backend', 'postgres')).lower())
    if store.backend not in STORE_BACKENDS:
        raise ValueError(
            f"Unsupported store backend '{store.backend}' (expected one of {STORE_BACKENDS})"
        )

    identity = IdentitySettings(
        lock_timeout_seconds=float(identity_raw.get('lock_timeout_seconds', 10.0)),
        max_key_rounds=int(identity_raw.get('max_key_rounds', 5)),
    )
    if identity.lock_timeout_seconds <= 0:
        raise ValueError("identity.lock_timeout_seconds must be positive")
    if identity.max_key_rounds < 1:
        raise ValueError("identity.max_key_rounds must be at least 1")

    log_settings = LoggingSettings(
        level=str(logging_raw.get('level', 'INFO')).upper(),
        file=logging_raw.get('file'),
    )

    logger.debug(f"Settings loaded from {config_path}: backend={store.backend}")
    return AppSettings(
        config_path=config_path,
        store=store,
        identity=identity,
        logging=log_settings,
    )
