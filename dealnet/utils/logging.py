"""
JSON log lines for the deals network.

Each line carries the request's correlation ID, the site this process serves,
and whichever governance/partner fields the caller passed via `extra=`.
Partner tokens can arrive as a `token=` query parameter, so messages are
scrubbed before they are written.
"""
import json
import logging
import re
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

STRUCTURED_EXTRA_KEYS = ("partner_key", "site_key", "endpoint", "rule", "action", "tier")

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")

_TOKEN_PARAM_RE = re.compile(r"([?&]token=)[^&\s\"']+")
REDACTED = "[redacted]"


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


def scrub_secrets(text: str) -> str:
    """Mask the value of any token= query parameter."""
    return _TOKEN_PARAM_RE.sub(lambda m: m.group(1) + REDACTED, text)


class StructuredJsonFormatter(logging.Formatter):
    """Single-line JSON. `site_key` on the record wins over the process default."""

    def __init__(self, site_key: Optional[str] = None):
        super().__init__()
        self.site_key = site_key

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": scrub_secrets(record.getMessage()),
        }
        if self.site_key:
            entry["site_key"] = self.site_key

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = scrub_secrets(self.formatException(record.exc_info))

        for key in STRUCTURED_EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO", site_key: Optional[str] = None) -> None:
    """Install one JSON stream handler on the root logger. Call once at startup."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter(site_key=site_key))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
