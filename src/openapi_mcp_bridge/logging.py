"""Logging helpers with redaction."""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


_SENSITIVE_KEYS = re.compile(r"(token|secret|api[_-]?key|password|passphrase|authorization)", re.IGNORECASE)

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str, log_dir: Optional[str] = None) -> None:
    # stdout carries the MCP stream, so console output goes to stderr.
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir:
        path = Path(log_dir).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                path / "openapi-mcp-bridge.log",
                when="midnight",
                backupCount=10,
                encoding="utf-8",
            )
        )
    logging.basicConfig(level=level.upper(), format=_FORMAT, handlers=handlers, force=True)


def redact_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    redacted: Dict[str, Any] = {}
    for key, value in payload.items():
        if _SENSITIVE_KEYS.search(str(key)):
            redacted[key] = "***REDACTED***"
        elif isinstance(value, Mapping):
            redacted[key] = redact_payload(value)
        else:
            redacted[key] = value
    return redacted
