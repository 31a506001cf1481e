from __future__ import annotations

"""Shared audit logging utilities.

Facilitator and resource server append immutable rows to the
``payment_audit_journal`` table, keyed by the request correlation id so one
payment can be followed across services. The sink is write-only; nothing in
the payment path reads it back.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import JSON, Column, String
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine

__all__ = [
    "AuditSink",
    "PaymentAuditEvent",
    "SqlAuditSink",
    "get_engine",
    "log_event",
]

_LOG = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Database setup
# ---------------------------------------------------------------------------


AUDIT_DB_URL = os.getenv("AUDIT_DB_URL", "sqlite:///./payment_audit.db")

_engine: Engine | None = None


class PaymentAuditEvent(SQLModel, table=True):
    """Immutable audit row for one protocol event."""

    __tablename__ = "payment_audit_journal"

    id: Optional[int] = Field(default=None, primary_key=True)

    # UTC timestamp when the event was recorded.
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    # Emitting service e.g. "facilitator", "resource_server"
    service: str = Field(sa_column=Column(String, nullable=False, index=True))

    # X-CORRELATION-ID of the request, generated when the caller sent none
    correlation_id: str = Field(sa_column=Column(String, nullable=False, index=True))

    # Event verb e.g. "VERIFY_ACCEPTED", "SETTLEMENT_FAILED"
    event: str = Field(sa_column=Column(String, nullable=False))

    details: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False, default={})
    )


def get_engine(url: Optional[str] = None) -> Engine:
    """Return the shared audit engine, creating tables on first use."""

    global _engine
    if url is not None:
        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
        )
        SQLModel.metadata.create_all(engine, tables=[PaymentAuditEvent.__table__])
        return engine
    if _engine is None:
        _engine = get_engine(AUDIT_DB_URL)
    return _engine


def log_event(
    *,
    session: Session,
    service: str,
    correlation_id: str,
    event: str,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Insert a new audit record and commit immediately."""

    entry = PaymentAuditEvent(
        service=service,
        correlation_id=correlation_id,
        event=event,
        details=details or {},
    )
    session.add(entry)
    session.commit()


# ---------------------------------------------------------------------------
# Sink interface consumed by the payment core
# ---------------------------------------------------------------------------


class AuditSink(Protocol):
    """Write-only sink for ``(correlation_id, event)`` records."""

    def record(
        self, correlation_id: str, event: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        ...


class SqlAuditSink:
    """``AuditSink`` backed by the ``payment_audit_journal`` table."""

    def __init__(self, service: str, engine: Optional[Engine] = None) -> None:
        self.service = service
        self._engine = engine

    def record(
        self, correlation_id: str, event: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        with Session(self._engine or get_engine()) as audit_sess:
            log_event(
                session=audit_sess,
                service=self.service,
                correlation_id=correlation_id,
                event=event,
                details=details,
            )
        _LOG.debug("audit %s %s", event, correlation_id)
