"""Logging setup and run-scoped loggers for exportpacker.

configure_logging() applies config/logging.yaml (or a basicConfig fallback)
once per process. Pipeline code logs through get_run_logger() so every line
of an export carries its run id, and batch-level lines also carry the batch
index: ``[nightly batch 3] ...``.
"""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

import yaml

from config.defaults import DEFAULT_LOG_LEVEL, LOG_FORMAT

_PACKAGE = "exportpacker"
_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "logging.yaml"


def _load_yaml_config(config_path: Path) -> Optional[Dict[str, Any]]:
    if not config_path.is_file():
        return None
    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    return cfg if isinstance(cfg, dict) else None


def _redirect_file_handlers(cfg: Dict[str, Any], log_file: str) -> None:
    # Covers FileHandler and the rotating variants
    target = Path(log_file)
    target.parent.mkdir(parents=True, exist_ok=True)
    for handler_cfg in cfg.get("handlers", {}).values():
        if str(handler_cfg.get("class", "")).endswith("FileHandler"):
            handler_cfg["filename"] = str(target)


def configure_logging(
    config_path: Optional[str] = None,
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """Configure process logging.

    Args:
        config_path: dictConfig YAML file; defaults to config/logging.yaml.
        log_level: Level applied to every configured logger and the root.
        log_file: Replaces the filename of every file handler in the YAML.
    """
    level = (log_level or DEFAULT_LOG_LEVEL).upper()
    cfg = _load_yaml_config(Path(config_path) if config_path else _DEFAULT_CONFIG_PATH)

    if cfg is None:
        logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
        return

    if log_file:
        _redirect_file_handlers(cfg, log_file)
    if log_level:
        for logger_cfg in cfg.get("loggers", {}).values():
            logger_cfg["level"] = level
        if "root" in cfg:
            cfg["root"]["level"] = level
    logging.config.dictConfig(cfg)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` under the 'exportpacker' namespace."""
    if name == _PACKAGE or name.startswith(_PACKAGE + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_PACKAGE}.{name}")


class RunContextAdapter(logging.LoggerAdapter):
    """Prefixes messages with the run id, and the batch index when bound.

    Usage:
        log = get_run_logger("pipeline", run_id="nightly")
        log.info("Dispatching %d batches", 3)           # [nightly] Dispatching 3 batches
        log.for_batch(2).warning("failed: %s", reason)  # [nightly batch 2] failed: ...
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        run_id = self.extra.get("run_id", "unknown")
        batch_index = self.extra.get("batch_index")
        if batch_index is None:
            return f"[{run_id}] {msg}", kwargs
        return f"[{run_id} batch {batch_index}] {msg}", kwargs

    def for_batch(self, batch_index: int) -> "RunContextAdapter":
        return RunContextAdapter(self.logger, {**self.extra, "batch_index": batch_index})


def get_run_logger(name: str, run_id: str, batch_index: Optional[int] = None) -> RunContextAdapter:
    """Get a logger adapter bound to one export run (and optionally one batch)."""
    extra: Dict[str, Any] = {"run_id": run_id}
    if batch_index is not None:
        extra["batch_index"] = batch_index
    return RunContextAdapter(get_logger(name), extra)
