"""Utility for initializing a storefront finance workspace.

Writes a default ``config.ini`` and a local cache seeded with the baseline
transactions. The module doubles as a script (``python setup_store.py``) and
as a library used by tests or other tooling.
"""

from __future__ import annotations

import argparse
import configparser
from pathlib import Path
from typing import Mapping, Sequence
import sys

from storefront_finance import DEFAULT_LOG_LEVEL
from storefront_finance.constants import (
    DEFAULT_REMOTE_TIMEOUT_SECONDS,
    DEFAULT_UTC_OFFSET_HOURS,
    EXPECTED_SCHEMA_VERSION,
    REMOTE_TABLE,
)
from storefront_finance.data_manager import CONFIG_FILE_NAME, DEFAULT_CACHE_FILE, load_settings
from storefront_finance.local_cache import LocalCache

# Sections and defaults written to a fresh config.ini.
DEFAULT_CONFIG: Mapping[str, Mapping[str, str]] = {
    "System": {
        "CacheFile": DEFAULT_CACHE_FILE,
        "SchemaVersion": EXPECTED_SCHEMA_VERSION,
    },
    "Business": {
        "UtcOffsetHours": str(DEFAULT_UTC_OFFSET_HOURS),
    },
    "Remote": {
        "Url": "",
        "Key": "",
        "Table": REMOTE_TABLE,
        "TimeoutSeconds": str(int(DEFAULT_REMOTE_TIMEOUT_SECONDS)),
        "UseRpcInsert": "true",
    },
    "Logging": {
        "File": "",
        "Level": DEFAULT_LOG_LEVEL,
    },
}


def write_config(
    destination: Path,
    *,
    cache_file: str = DEFAULT_CACHE_FILE,
    remote_url: str = "",
    remote_key: str = "",
    schema_version: str = EXPECTED_SCHEMA_VERSION,
    overwrite: bool = False,
) -> Path:
    """Write a ``config.ini`` at ``destination`` from :data:`DEFAULT_CONFIG`.

    Parameters are overridable to facilitate testing. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    parser = configparser.ConfigParser()
    parser.optionxform = str  # keep CamelCase option names
    parser.read_dict(DEFAULT_CONFIG)
    parser.set("System", "CacheFile", cache_file)
    parser.set("System", "SchemaVersion", schema_version)
    parser.set("Remote", "Url", remote_url)
    parser.set("Remote", "Key", remote_key)

    with destination.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    return destination


def seed_cache(cache_path: Path, *, overwrite: bool = False) -> Path:
    """Create the seeded cache snapshot at ``cache_path``.

    Raises:
        FileExistsError: If the snapshot exists and ``overwrite`` is ``False``.
    """

    cache_path = cache_path.expanduser().resolve()
    if cache_path.exists():
        if not overwrite:
            raise FileExistsError(f"Refusing to overwrite existing cache: {cache_path}")
        cache_path.unlink()

    LocalCache(cache_path).load_or_seed()
    return cache_path


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Write ``config.ini`` when missing, then seed the cache it points at."""

    if not config_path.exists():
        write_config(config_path)
    settings = load_settings(config_path)
    return seed_cache(settings.cache_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize a storefront finance workspace")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-seed the cache even if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Storefront Finance Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        cache_path = run_from_config(config_path, overwrite=args.force)
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to re-seed the existing cache if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workspace files: {exc}")
        return 1

    print(f"\n[SUCCESS] Seeded transaction cache at '{cache_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
