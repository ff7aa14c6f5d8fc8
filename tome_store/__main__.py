"""
tome_store/__main__.py -- Command-line maintenance for a character store.

Usage::

    python -m tome_store inspect
    python -m tome_store --data-dir ./saves export backup.json
    python -m tome_store import backup.json --backup
    python -m tome_store cleanup-legacy
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from tome_store import storage_keys as keys
from tome_store.config import StoreConfig
from tome_store.data_export import ImportFormatError, export_character_data, import_character_data
from tome_store.orchestrator import SaveError, create_orchestrator

logger = logging.getLogger("tome_store")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _summarize(value) -> str:
    if isinstance(value, (list, dict)):
        return f"{len(value)} entr{'y' if len(value) == 1 else 'ies'}"
    return repr(value)


async def _inspect(orchestrator) -> int:
    result = await orchestrator.load_state()
    state = orchestrator.character_state
    print(f"{'field':34} {'store':6} summary")
    print("-" * 60)
    for name in keys.list_state_keys():
        store = "bulk" if orchestrator.hybrid.is_large_key(keys.storage_key_for(name)) else "local"
        value = state[name]
        if name == keys.EXTERNAL_CURRICULUM:
            value = value.get("curriculums", {})
        print(f"{name:34} {store:6} {_summarize(value)}")
    print("-" * 60)
    print(f"local store usage: {orchestrator.local.usage_bytes()} / {orchestrator.local.quota_bytes} bytes")
    if result.repaired_fields:
        print(f"repaired: {', '.join(result.repaired_fields)}")
    if result.failed_fields:
        print(f"failed:   {', '.join(result.failed_fields)}")
        return 1
    return 0


async def _export(orchestrator, path: str) -> int:
    meta = await export_character_data(orchestrator, path)
    print(f"Exported {meta['fields']} fields to {meta['path']}")
    return 0


async def _import(orchestrator, path: str, backup_dir) -> int:
    try:
        result = await import_character_data(orchestrator, path, backup_dir=backup_dir)
    except ImportFormatError as exc:
        logger.error("%s", exc)
        return 1
    if result.backup_path:
        print(f"Previous character backed up to {result.backup_path}")
    print(f"Imported character data (version {result.version})")
    if result.newer_version:
        print("Warning: the file comes from a newer version; some data may be missing.")
    return 1 if result.failed_fields else 0


async def _cleanup(orchestrator) -> int:
    removed = await orchestrator.hybrid.cleanup_legacy_large_keys()
    if removed:
        print(f"Removed legacy local copies: {', '.join(removed)}")
    else:
        print("No legacy local copies to remove.")
    return 0


async def _run(args: argparse.Namespace) -> int:
    config = StoreConfig.from_env(data_dir=args.data_dir)
    orchestrator = create_orchestrator(config)
    try:
        if args.command == "inspect":
            return await _inspect(orchestrator)
        if args.command == "export":
            return await _export(orchestrator, args.path)
        if args.command == "import":
            backup_dir = config.backups_dir if args.backup else None
            return await _import(orchestrator, args.path, backup_dir)
        if args.command == "cleanup-legacy":
            return await _cleanup(orchestrator)
        raise ValueError(f"Unknown command: {args.command}")
    except SaveError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        await orchestrator.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m tome_store",
        description="Inspect and maintain a Tome of Secrets character store",
    )
    parser.add_argument("--data-dir", default=None, help="Store directory (default: per-user data dir)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("inspect", help="Load the character and summarise every field")

    export = sub.add_parser("export", help="Write the character to a JSON file")
    export.add_argument("path")

    imp = sub.add_parser("import", help="Replace the character with one from a JSON file")
    imp.add_argument("path")
    imp.add_argument("--backup", action="store_true", help="Export the current character first")

    sub.add_parser("cleanup-legacy", help="Drop local copies of data already in the bulk store")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
