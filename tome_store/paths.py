"""
tome_store/paths.py -- Default on-disk locations.

Uses platformdirs for the per-user data directory, which plays the part of
the browser's per-origin storage area.
"""

from __future__ import annotations

import os

from platformdirs import user_data_dir

_APP_NAME = "TomeOfSecrets"
_APP_AUTHOR = "TomeOfSecrets"


def get_user_data_dir() -> str:
    """Return the platform-appropriate user data directory."""
    path = user_data_dir(_APP_NAME, _APP_AUTHOR)
    os.makedirs(path, exist_ok=True)
    return path
