"""
Configuration loader (``stock_config.loader``).

Responsibility
--------------
Reads a YAML configuration file and parses it into a
``StockLedgerConfig``.  Runtime callers go through
``stock_config.get_active_config()``; this module is the file-level
tooling underneath it.

Invariants enforced
-------------------
* ``yaml.safe_load`` only; no arbitrary object construction.
* The top level must be a mapping; an empty file means "all defaults".
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shape or unknown keys  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import StockLedgerConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load one YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: the file does not exist.
        yaml.YAMLError: invalid YAML.
        ValueError: the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping, got {type(data).__name__}")
    return data


def parse_config(data: dict[str, Any]) -> StockLedgerConfig:
    """
    Parse a configuration mapping.

    Settings may sit at the top level or under a ``stock_ledger`` key.
    """
    section = data.get("stock_ledger", data)
    if not isinstance(section, dict):
        raise ValueError("'stock_ledger' must be a mapping")
    return StockLedgerConfig.from_dict(section)


def load_config_file(path: Path) -> StockLedgerConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(config: StockLedgerConfig) -> str:
    """SHA-256 over the canonical JSON form, excluding the database URL."""
    payload = config.to_dict()
    payload.pop("database_url", None)
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
