import json
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from academy_gate.core.config import settings

# httpx logs every request line at INFO; GuildClient already emits its own events
QUIET_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """One JSON object per line. Only whitelisted extras are emitted, so tokens never reach the log."""

    EXTRA_FIELDS = (
        "user_id", "external_id", "status_code", "operation", "outcome",
        "failure_type", "subscription_status", "new_status", "reason",
        "error", "task", "enqueued", "breaker_name", "old_state", "new_state",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (field, getattr(record, field))
            for field in self.EXTRA_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # enums and datetimes in extras
        return json.dumps(payload, ensure_ascii=False, default=str)


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
    """Route the root logger to stderr (and LOG_FILE when set) as JSON."""
    formatter = JsonFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(
            RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(_level(settings.log_level))
    root.handlers = handlers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
