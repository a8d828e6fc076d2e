"""Configuration file I/O."""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from .schema import CURRENT_SCHEMA_VERSION, Config, DEFAULT_HOME


CONFIG_FILE = DEFAULT_HOME / "config.json"


def _migrate_v0_to_v1(raw: dict[str, Any]) -> dict[str, Any]:
    """Pre-versioned files named the gateway section after the provider."""
    if "evolution" in raw and "gateway" not in raw:
        raw["gateway"] = raw.pop("evolution")
    return raw


# from_version -> migration producing from_version + 1
MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    0: _migrate_v0_to_v1,
}


def migrate(raw: dict[str, Any]) -> dict[str, Any]:
    """Bring a raw config dict up to the current schema version.

    Steps without a registered migration only bump the version number.
    Errors from a migration propagate.
    """
    version = raw.get("schema_version", 0)
    while version < CURRENT_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is not None:
            raw = step(raw)
        version += 1
        raw["schema_version"] = version
    return raw


def _upgrade_file(config_file: Path, raw: dict[str, Any]) -> dict[str, Any]:
    """Migrate an outdated file in place, keeping a ``.bak`` copy."""
    from_version = raw.get("schema_version", 0)
    shutil.copy2(config_file, config_file.with_suffix(".json.bak"))
    raw = migrate(raw)
    config_file.write_text(json.dumps(raw, indent=2) + "\n")
    logger.info(
        f"Upgraded {config_file} from schema v{from_version} to v{CURRENT_SCHEMA_VERSION}"
    )
    return raw


def load_config(config_file: Path | None = None) -> Config:
    """Load configuration, falling back to defaults on any problem.

    Environment variables (``WABRIDGE_*``) apply on top of the defaults only;
    values present in the file win.
    """
    config_file = config_file or CONFIG_FILE
    if not config_file.exists():
        return Config()

    try:
        raw = json.loads(config_file.read_text())
        version = raw.get("schema_version", 0)
        if version > CURRENT_SCHEMA_VERSION:
            logger.warning(
                f"{config_file} uses schema v{version}, newer than this wabridge "
                f"(v{CURRENT_SCHEMA_VERSION}); unknown settings are ignored"
            )
        elif version < CURRENT_SCHEMA_VERSION:
            raw = _upgrade_file(config_file, raw)
        return Config(**raw)
    except json.JSONDecodeError as e:
        logger.warning(f"{config_file} is not valid JSON ({e}), using defaults")
    except Exception as e:
        logger.warning(f"Could not load {config_file} ({e}), using defaults")
    return Config()


def save_config(config: Config, config_file: Path | None = None) -> None:
    """Save configuration to file."""
    config_file = config_file or CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config.model_dump(mode="json"), indent=2) + "\n")
    logger.info(f"Saved config to {config_file}")
