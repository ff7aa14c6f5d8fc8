"""
tome_store/config.py -- Store configuration.

Usage::

    from tome_store.config import StoreConfig

    config = StoreConfig.from_env()
    config.local_path    # .../local_storage.json
    config.bulk_path     # .../tome_of_secrets.db
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from tome_store.paths import get_user_data_dir

logger = logging.getLogger(__name__)

# Browsers commonly allow ~5 MB per origin for localStorage.
DEFAULT_LOCAL_QUOTA_BYTES = 5 * 1024 * 1024

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class StoreConfig:
    """Where the two stores live and how big the small one may grow."""

    data_dir: Path = field(default_factory=lambda: Path(get_user_data_dir()))
    local_quota_bytes: int = DEFAULT_LOCAL_QUOTA_BYTES
    local_filename: str = "local_storage.json"
    bulk_filename: str = "tome_of_secrets.db"
    bulk_enabled: bool = True
    backups_dirname: str = "backups"

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        if self.local_quota_bytes <= 0:
            raise ValueError("local_quota_bytes must be positive")

    @property
    def local_path(self) -> Path:
        return self.data_dir / self.local_filename

    @property
    def bulk_path(self) -> Path:
        return self.data_dir / self.bulk_filename

    @property
    def backups_dir(self) -> Path:
        return self.data_dir / self.backups_dirname

    @classmethod
    def from_env(cls, environ=None, **overrides) -> StoreConfig:
        """Build a config from ``TOME_STORE_*`` environment variables.

        Recognised variables: ``TOME_STORE_DATA_DIR``,
        ``TOME_STORE_LOCAL_QUOTA`` (bytes) and ``TOME_STORE_DISABLE_BULK``.
        Keyword *overrides* win over the environment.
        """
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        data_dir = env.get("TOME_STORE_DATA_DIR")
        if data_dir:
            kwargs["data_dir"] = Path(data_dir)

        quota = env.get("TOME_STORE_LOCAL_QUOTA")
        if quota:
            try:
                kwargs["local_quota_bytes"] = int(quota)
            except ValueError:
                logger.warning("Ignoring non-integer TOME_STORE_LOCAL_QUOTA=%r", quota)

        disable_bulk = env.get("TOME_STORE_DISABLE_BULK", "")
        if disable_bulk.strip().lower() in _TRUTHY:
            kwargs["bulk_enabled"] = False

        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)
