"""Durable registry of consumed authorization nonces.

The primary key on ``used_nonces.nonce`` is the only guard against double
settlement: ``consume`` is a single INSERT and the database decides which
of two concurrent callers wins.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Field, Session, SQLModel, create_engine

__all__ = ["NonceRegistry", "UsedNonce"]

_LOG = logging.getLogger(__name__)


class UsedNonce(SQLModel, table=True):
    __tablename__ = "used_nonces"

    # lower-cased 0x-hex; nonces are unique across payers and chains
    nonce: str = Field(primary_key=True)
    chain_id: int
    payer: str
    consumed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NonceRegistry:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        SQLModel.metadata.create_all(engine, tables=[UsedNonce.__table__])

    @classmethod
    def from_url(cls, url: str) -> "NonceRegistry":
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        return cls(create_engine(url, echo=False, connect_args=connect_args))

    @staticmethod
    def _key(nonce: str) -> str:
        return nonce.lower()

    def is_used(self, nonce: str) -> bool:
        with Session(self._engine) as session:
            return session.get(UsedNonce, self._key(nonce)) is not None

    def consume(self, nonce: str, *, chain_id: int, payer: str) -> bool:
        """Mark *nonce* consumed. Returns ``False`` if it already was."""

        with Session(self._engine) as session:
            session.add(UsedNonce(nonce=self._key(nonce), chain_id=chain_id, payer=payer))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                _LOG.info("nonce %s already consumed", nonce)
                return False
        return True

    def consumed_at(self, nonce: str) -> Optional[datetime]:
        with Session(self._engine) as session:
            row = session.get(UsedNonce, self._key(nonce))
            return row.consumed_at if row else None
