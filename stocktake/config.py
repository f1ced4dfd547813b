"""TOML configuration loader."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

_DEFAULT_DB_PATH = "~/.config/stocktake/stocktake.db"
_DEFAULT_EXPORT_DIR = "~/stocktake/exports"


@dataclass
class DatabaseConfig:
    path: str = _DEFAULT_DB_PATH


@dataclass
class ScannerConfig:
    camera_index: int = 0
    throttle_ms: int = 800
    poll_interval: float = 0.05


@dataclass
class CatalogConfig:
    batch_size: int = 800


@dataclass
class ExportConfig:
    output_dir: str = _DEFAULT_EXPORT_DIR


@dataclass
class GDriveConfig:
    enabled: bool = False
    credentials_path: str = "~/.config/stocktake/gdrive_credentials.json"
    token_path: str = "~/.config/stocktake/gdrive_token.json"
    folder_id: str = ""


@dataclass
class StocktakeConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    gdrive: GDriveConfig = field(default_factory=GDriveConfig)


def load_config(path: str | Path | None = None) -> StocktakeConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    The database path and export directory can be overridden with the
    STOCKTAKE_DB and STOCKTAKE_EXPORT_DIR environment variables.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    db = raw.get("database", {})
    scn = raw.get("scanner", {})
    cat = raw.get("catalog", {})
    exp = raw.get("export", {})
    gdr = raw.get("gdrive", {})

    # Resolve paths: environment variable → config file → default
    db_path = os.environ.get("STOCKTAKE_DB") or db.get("path", _DEFAULT_DB_PATH)
    export_dir = os.environ.get("STOCKTAKE_EXPORT_DIR") or exp.get(
        "output_dir", _DEFAULT_EXPORT_DIR
    )

    batch_size = cat.get("batch_size", 800)
    if batch_size < 1:
        raise ValueError(f"catalog.batch_size must be positive, got {batch_size}")

    return StocktakeConfig(
        database=DatabaseConfig(path=db_path),
        scanner=ScannerConfig(
            camera_index=scn.get("camera_index", 0),
            throttle_ms=scn.get("throttle_ms", 800),
            poll_interval=scn.get("poll_interval", 0.05),
        ),
        catalog=CatalogConfig(batch_size=batch_size),
        export=ExportConfig(output_dir=export_dir),
        gdrive=GDriveConfig(
            enabled=gdr.get("enabled", False),
            credentials_path=gdr.get(
                "credentials_path",
                "~/.config/stocktake/gdrive_credentials.json",
            ),
            token_path=gdr.get(
                "token_path",
                "~/.config/stocktake/gdrive_token.json",
            ),
            folder_id=gdr.get("folder_id", ""),
        ),
    )
