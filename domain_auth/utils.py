import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now_iso() -> str:
    """Return current UTC time as ISO format string with timezone info."""
    return datetime.now(timezone.utc).isoformat()


def _safe_json_parse(response: Any):
    """Safely parse JSON response, returning dict or text on failure."""
    try:
        return response.json()
    except Exception:
        full_text = response.text if hasattr(response, "text") else str(response.content)
        # Truncate for logging purposes only
        return {"_raw_response": full_text[:2000], "_parse_error": "Not valid JSON"}


def configure_logging(level: str = "INFO", stream: Optional[Any] = None) -> logging.Logger:
    """Install a single stream handler on the package logger."""
    logger = logging.getLogger("domain_auth")
    if not logger.handlers:
        handler = logging.StreamHandler(stream or sys.stderr)
        formatter = logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return logger
