from __future__ import annotations

import logging
from typing import Any
from sqlalchemy.orm import Session

from ..models import EventLog

LOGGER = logging.getLogger("evride.events")


def log_event(
    db: Session,
    component: str,
    level: str,
    message: str,
    payload: dict[str, Any] | None = None,
) -> EventLog:
    entry = EventLog(component=component, level=level, message=message, payload_json=payload)
    db.add(entry)
    LOGGER.log(logging.getLevelName(level.upper()), "[%s] %s %s", component, message, payload or {})
    return entry
