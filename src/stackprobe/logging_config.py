"""Logging configuration for stackprobe.

Per-module overrides let one pipeline stage (``stackprobe.probe``,
``stackprobe.monitor``) run at DEBUG while the rest stays at the global
level.
"""

import logging
import sys
from pathlib import Path
from typing import Dict, Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# HTTP and browser stacks log every request at INFO/DEBUG
QUIET_LOGGERS = ('httpx', 'httpcore', 'asyncio', 'playwright')


def _to_level(level: str) -> int:
    return getattr(logging, str(level).upper(), logging.INFO)


def parse_module_levels(specs) -> Dict[str, str]:
    """Turn ``["stackprobe.probe=DEBUG", ...]`` into a name -> level map.

    Entries without ``=`` are ignored.
    """
    levels = {}
    for spec in specs or []:
        name, sep, level = spec.partition('=')
        if sep and name.strip():
            levels[name.strip()] = level.strip().upper() or 'INFO'
    return levels


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    module_levels: Optional[Dict[str, str]] = None,
) -> None:
    """Configure root logging for the CLI and the rescan worker.

    Args:
        level: Global log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path, written in addition to stdout
        format_string: Optional custom format string
        module_levels: Optional logger name -> level overrides
    """
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=_to_level(level),
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name, module_level in (module_levels or {}).items():
        logging.getLogger(name).setLevel(_to_level(module_level))
