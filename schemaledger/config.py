#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import getpass
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_DATABASE_URL = 'sqlite+aiosqlite:///schema_ledger.db'
DATABASE_URL_ENV = 'SCHEMALEDGER_DATABASE_URL'
LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'


class RobustFileHandler(logging.FileHandler):
    """FileHandler that gracefully handles flush errors on Windows"""

    def flush(self):
        """Flush the stream, catching OSError on Windows file handles"""
        try:
            super().flush()
        except OSError as e:
            # EINVAL on a half-closed Windows handle
            if e.errno != 22:
                raise


def configure_logger(logger,
                     log_file=None,
                     log_format=LOG_FORMAT,
                     log_level=logging.INFO):
    """Configure a logger with a file or stream handler

    Args:
        logger: Logger instance or logger name string
        log_file: File path string or file-like object (None for stderr)
        log_format: Format string for log messages
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG)

    Returns:
        Configured logger instance
    """
    if isinstance(log_file, str):
        handler = RobustFileHandler(
            log_file,
            mode='a',
            encoding='utf-8',
            errors='replace'
        )
    else:
        handler = logging.StreamHandler(log_file)

    formatter = logging.Formatter(log_format)

    if isinstance(logger, str):
        logger = logging.getLogger(logger)

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(log_level)

    return logger


@dataclass(frozen=True)
class LockConfig:
    """Immutable migration lock settings.

    Attributes:
        lock_key: Identifier of the single mutual-exclusion resource
        default_timeout: Seconds acquire_wait() waits when no timeout is given
        poll_interval: Seconds between acquisition attempts while waiting
        lease_ttl: Seconds a lease stays valid without renewal
    """
    lock_key: int = 8675309
    default_timeout: float = 30.0
    poll_interval: float = 0.1
    lease_ttl: float = 600.0

    def __post_init__(self):
        if self.default_timeout < 0:
            raise ValueError(f"default_timeout must be >= 0, got {self.default_timeout}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")
        if self.lease_ttl <= 0:
            raise ValueError(f"lease_ttl must be > 0, got {self.lease_ttl}")


def default_principal() -> str:
    """Identity recorded as executed_by / created_by."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return 'system'


@dataclass(frozen=True)
class LedgerConfig:
    """Runtime configuration for the migration ledger."""
    database_url: str = DEFAULT_DATABASE_URL
    principal: str = field(default_factory=default_principal)
    lock: LockConfig = field(default_factory=LockConfig)
    log_level: str = 'info'
    log_file: Optional[str] = None

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level.upper())


def normalize_database_url(url: str) -> str:
    """Rewrite sync driver URLs to their async equivalents."""
    if url.startswith('sqlite:///'):
        return url.replace('sqlite:///', 'sqlite+aiosqlite:///', 1)
    if url.startswith('postgresql://'):
        return url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql+asyncpg://', 1)
    return url


def read_config_file(config_file) -> dict:
    """Load a JSON or YAML (by extension) configuration file."""
    config_file = str(config_file)
    with open(config_file, 'r', encoding='utf-8') as fp:
        if config_file.endswith(('.yaml', '.yml')):
            return yaml.safe_load(fp) or {}
        return json.load(fp)


def load_config(config_file=None) -> LedgerConfig:
    """Build a LedgerConfig from a config file and the environment.

    Database URL resolution (first match wins):
        1. SCHEMALEDGER_DATABASE_URL environment variable
        2. ``database_url`` in the config file
        3. ``database`` (plain SQLite path) in the config file
        4. sqlite+aiosqlite:///schema_ledger.db

    Args:
        config_file: Optional path to a .json, .yaml or .yml file

    Returns:
        LedgerConfig instance
    """
    conf = {}
    if config_file is not None:
        if not Path(config_file).exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")
        conf = read_config_file(config_file)

    if DATABASE_URL_ENV in os.environ:
        database_url = os.environ[DATABASE_URL_ENV]
    elif 'database_url' in conf:
        database_url = conf['database_url']
    elif 'database' in conf:
        database_url = conf['database']
    else:
        database_url = DEFAULT_DATABASE_URL

    lock_conf = conf.get('lock', {})
    lock = LockConfig(
        lock_key=int(lock_conf.get('lock_key', LockConfig.lock_key)),
        default_timeout=float(lock_conf.get('timeout', LockConfig.default_timeout)),
        poll_interval=float(lock_conf.get('poll_interval', LockConfig.poll_interval)),
        lease_ttl=float(lock_conf.get('lease_ttl', LockConfig.lease_ttl)),
    )

    logging_conf = conf.get('logging', {})

    return LedgerConfig(
        database_url=normalize_database_url(database_url),
        principal=conf.get('principal') or default_principal(),
        lock=lock,
        log_level=logging_conf.get('level', conf.get('log_level', 'info')),
        log_file=logging_conf.get('file'),
    )
