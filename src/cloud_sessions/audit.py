"""Structured lifecycle event records.

Every user-visible lifecycle event (start, stop, delete, edits) is logged as
one JSON line on the ``cloud_sessions.audit`` logger so that whatever sink
the logging configuration routes it to receives a stable record shape.
"""

from __future__ import annotations

import datetime
import json
import logging

from cloud_sessions.models.session import Session

audit_logger = logging.getLogger("cloud_sessions.audit")


def session_event(session: Session, message: str) -> dict[str, str]:
    return {
        "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
        "sessionId": session.session_id,
        "sessionName": session.session_name,
        "type": session.type.value,
        "message": message,
    }


def log_session_event(session: Session, message: str) -> None:
    audit_logger.info(json.dumps(session_event(session, message)))
