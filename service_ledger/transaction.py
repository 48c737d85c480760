"""Transaction ownership for the ledger core.

A core operation either receives a session from its caller and merely
participates in that caller's transaction, or receives nothing and owns a
transaction of its own for the duration of the call.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session, sessionmaker

from service_ledger.database import SessionLocal

logger = logging.getLogger(__name__)


class TransactionContext:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def begin(self) -> Session:
        session = self._session_factory()
        session.begin()
        return session

    def commit(self, session: Session) -> None:
        session.commit()

    def rollback(self, session: Session) -> None:
        session.rollback()

    def with_transaction(self, existing: Session | None = None) -> tuple[Session, bool]:
        """Return ``(session, owns_lifecycle)`` for one core call."""
        if existing is not None:
            return existing, False
        return self.begin(), True

    @contextmanager
    def scope(self, existing: Session | None = None) -> Iterator[Session]:
        """Commit/rollback around the block only when the transaction is ours.

        A participating block never begins, commits, rolls back or closes the
        caller's session; exceptions propagate unchanged so the owner decides.
        """
        session, owns = self.with_transaction(existing)
        if not owns:
            yield session
            return
        try:
            yield session
        except Exception:
            logger.debug("Rolling back owned transaction")
            self.rollback(session)
            raise
        else:
            self.commit(session)
        finally:
            session.close()


transactions = TransactionContext(SessionLocal)
