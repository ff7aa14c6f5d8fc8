"""
Shared utility functions for the Tome of Secrets state store.

Consolidates the JSON helpers used by the local store, the export/import
layer and the orchestrator's change detection.

All JSON file writes use atomic temp-file-then-os.replace() so that a crash
in the middle of a save never leaves a half-written store on disk.
"""

import json
import math
import os
import shutil
import tempfile
from datetime import datetime, timezone

# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def now_stamp() -> str:
    """Return a filesystem-safe UTC timestamp for filenames."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


# ---------------------------------------------------------------------------
# JSON I/O (atomic writes)
# ---------------------------------------------------------------------------

def safe_write_json(path, data, *, indent=2):
    """Atomically write *data* as JSON to *path*.

    Uses a temporary file in the same directory followed by
    ``os.replace()`` so that readers never see a partially-written file.
    Parent directories are created if they do not exist.

    Parameters
    ----------
    path : str or pathlib.Path
        Absolute path to the target JSON file.
    data
        JSON-serialisable object to write.
    indent : int, optional
        JSON indentation level (default 2).
    """
    path = str(path)
    parent = os.path.dirname(path)
    os.makedirs(parent, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=indent, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def backup_file(path, backups_dir, *, suffix="") -> str | None:
    """Copy *path* into *backups_dir* under a timestamped name.

    Returns the backup path, or None if *path* does not exist.
    """
    path = str(path)
    if not os.path.exists(path):
        return None
    os.makedirs(str(backups_dir), exist_ok=True)
    name = os.path.basename(path)
    backup_name = f"{now_stamp()}_{name}{suffix}"
    backup_path = os.path.join(str(backups_dir), backup_name)
    shutil.copy2(path, backup_path)
    return backup_path


# ---------------------------------------------------------------------------
# JSON value helpers
# ---------------------------------------------------------------------------

def is_number(value) -> bool:
    """True for finite JSON numbers (bools are not numbers here)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def deep_equal(a, b) -> bool:
    """Compare two JSON-like values structurally.

    Unlike ``==`` this keeps ``True`` and ``1`` apart, and treats tuples as
    lists because both serialise to a JSON array.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, (dict, list, tuple)) or isinstance(b, (dict, list, tuple)):
        return False
    return a == b
