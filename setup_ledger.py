"""Utility for initializing an empty bakery ledger data file.

The module doubles as a script (``python setup_ledger.py``) and as a library
used by tests or other tooling, so the bootstrap logic is the same whichever
way it is invoked.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence
import sys

from bakery_ledger import data_manager
from bakery_ledger.constants import DEFAULT_SHEET_NAME
from bakery_ledger.models import LedgerState
from bakery_ledger.normalizer import build_sheet

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    schema_version: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, schema_version=schema_version)


def create_data_file(
    destination: Path,
    *,
    sheet_name: str = DEFAULT_SHEET_NAME,
    overwrite: bool = False,
) -> Path:
    """Write a ledger document holding one empty, active sheet.

    When ``overwrite`` is ``False`` (the default) an existing file is left
    alone and ``FileExistsError`` is raised.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing ledger file: {destination}")

    sheet = build_sheet(sheet_name)
    state = LedgerState(sheets=[sheet], active_sheet_id=sheet.sheet_id)
    data_manager.save_state(state, destination)
    return destination


def run_from_config(config_path: Path, *, sheet_name: str = DEFAULT_SHEET_NAME, overwrite: bool = False) -> Path:
    """Create the data file named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_data_file(settings.data_file, sheet_name=sheet_name, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the bakery ledger data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--sheet-name",
        default=DEFAULT_SHEET_NAME,
        help=f"Name of the first stock sheet (default: {DEFAULT_SHEET_NAME})",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target data file if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Bakery Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, sheet_name=args.sheet_name, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write ledger file: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger file at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
