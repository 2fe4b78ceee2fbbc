"""Logging setup for the scheduling service.

Outside dev, records are written as key=value lines. Scheduling context
passed through ``extra`` (doctor, appointment, slot, actor) is appended
to the line so a booking or refund can be traced across services.
"""

import logging
import sys
from typing import Any

from carequeue.core.config import settings

# Record attributes copied into structured lines when present
CONTEXT_FIELDS = ("request_id", "action", "actor", "doctor_id", "appointment_id", "slot_id")


class StructuredFormatter(logging.Formatter):
    """key=value formatter carrying scheduling context."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return " ".join(f"{k}={v}" for k, v in log_data.items())


def setup_logging() -> None:
    """Configure application logging."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if settings.is_dev:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = StructuredFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Driver chatter drowns out booking lines at DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


class AuditLogger:
    """Audit trail for bookings, status changes, payments and queue moves.

    Every entry goes to the ``carequeue.audit`` logger at INFO with the
    action, the acting party and the entity id attached as record
    attributes, e.g. ``appointment_id`` for entity_type "appointment".
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger("carequeue.audit")

    def log(
        self,
        action: str,
        actor_type: str,
        actor_id: str | None,
        entity_type: str,
        entity_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        actor = f"{actor_type}:{actor_id}" if actor_id else actor_type
        self.logger.info(
            f"AUDIT: {action} {entity_type}={entity_id} by {actor} {metadata or {}}",
            extra={"action": action, "actor": actor, f"{entity_type}_id": entity_id},
        )


audit_logger = AuditLogger()
