"""
stock_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the one way to obtain a
    ``StockLedgerConfig`` at runtime.  It resolves which YAML file to read,
    applies the ``DATABASE_URL`` environment override, and logs what was
    loaded.

Architecture position:
    Configuration -- sits beside the kernel.  The kernel never imports
    from ``stock_config``; orchestrators and scripts receive the config
    object and pass the relevant fields down.

Resolution order:
    1. ``path`` argument.
    2. ``STOCK_LEDGER_CONFIG`` environment variable.
    3. The packaged ``sets/default.yaml``.

Audit relevance:
    Every call emits a ``STOCK_CONFIG_TRACE`` log record with the config
    id, version, source path and checksum.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from stock_config.loader import compute_checksum, load_config_file
from stock_config.schema import StockLedgerConfig

_logger = logging.getLogger("stock_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_ENV_VAR = "STOCK_LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> StockLedgerConfig:
    """
    Load the active ledger configuration.

    Raises:
        FileNotFoundError: The resolved file does not exist.
        ValueError: The file fails schema validation.
    """
    source = Path(path or os.environ.get(CONFIG_ENV_VAR) or _DEFAULT_CONFIG_FILE)
    config = load_config_file(source)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        config = dataclasses.replace(config, database_url=database_url)

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "source": str(source),
            "checksum": compute_checksum(config),
            "block_posting_when_pending_close": config.block_posting_when_pending_close,
        },
    )
    return config


__all__ = ["StockLedgerConfig", "get_active_config"]
