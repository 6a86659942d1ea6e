"""Structured logging utilities."""

import json
import logging

# logger.info(..., extra={...}) 로 전달되면 JSON 필드로 함께 출력
CORRELATION_FIELDS = (
    "audit_log_id",
    "user_id",
    "event_id",
    "stripe_session_id",
    "error_code",
)


class JsonFormatter(logging.Formatter):
    """JSON log formatter with payment correlation fields."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        log_record = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%d %H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for field in CORRELATION_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False, default=str)


def init_logging(level: int = logging.INFO) -> None:
    """Initialize application-wide structured logging."""

    logger = logging.getLogger()
    if logger.hasHandlers():
        logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.info("Logging initialized")
