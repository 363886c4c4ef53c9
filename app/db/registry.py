# app/db/registry.py
"""
Session Registry - the shared handle over the persistence layer.

Every mutating operation runs inside `transaction()`: one database session,
one commit point, rollback on any error. Callers that need the per-credential
(or per-live-session) critical section take it through `lock_credential` /
`lock_live_session`; both the in-process keyed lock and the row lock are held
until the transaction ends.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import LockTimeoutError, StoreUnavailableError
from app.models.credential import Credential
from app.models.live_session import LiveSession
from app.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

TRANSIENT_STORE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)

_HELD_LOCKS = "held_locks"
LOCK_TIMEOUT_EVENT = "registry.lock_timeout"


class SessionRegistry:
    def __init__(self, session_factory: sessionmaker, locks: Optional[KeyedLock] = None):
        self._session_factory = session_factory
        self._locks = locks or KeyedLock()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        db = self._session_factory()
        held: list[str] = []
        db.info[_HELD_LOCKS] = held
        try:
            yield db
            db.commit()
        except TRANSIENT_STORE_ERRORS as e:
            self._safe_rollback(db)
            logger.error(
                f"Session store unavailable: {type(e).__name__}",
                exc_info=True,
                extra={"error": str(e)},
            )
            raise StoreUnavailableError(details={"error_type": type(e).__name__}) from e
        except BaseException:
            self._safe_rollback(db)
            raise
        finally:
            db.close()
            for key in reversed(held):
                self._locks.release(key)

    @contextmanager
    def read(self) -> Iterator[Session]:
        """Read-only session; nothing is committed."""
        db = self._session_factory()
        try:
            yield db
        except TRANSIENT_STORE_ERRORS as e:
            logger.error(f"Session store unavailable on read: {type(e).__name__}", exc_info=True)
            raise StoreUnavailableError(details={"error_type": type(e).__name__}) from e
        finally:
            db.close()

    def lock_credential(self, db: Session, credential_id: str) -> Optional[Credential]:
        """
        Enter the critical section for one class login and return its row
        (or None if it does not exist). Re-entrant within a transaction.
        """
        self._hold(db, f"credential:{credential_id}")
        return (
            db.query(Credential)
            .filter(Credential.id == credential_id)
            .with_for_update()
            .first()
        )

    def lock_live_session(self, db: Session, live_session_id: str) -> Optional[LiveSession]:
        self._hold(db, f"live_session:{live_session_id}")
        return (
            db.query(LiveSession)
            .filter(LiveSession.id == live_session_id)
            .with_for_update()
            .first()
        )

    def _hold(self, db: Session, key: str) -> None:
        held = db.info.get(_HELD_LOCKS)
        if held is None:
            raise RuntimeError("Critical sections are only available inside registry.transaction()")
        if key in held:
            return
        try:
            self._locks.acquire(key)
        except TimeoutError as e:
            logger.warning(
                f"Timed out waiting for critical section {key}",
                extra={"event": LOCK_TIMEOUT_EVENT, "lock_key": key},
            )
            raise LockTimeoutError(key) from e
        held.append(key)

    @staticmethod
    def _safe_rollback(db: Session) -> None:
        try:
            db.rollback()
        except TRANSIENT_STORE_ERRORS:
            logger.warning("Rollback failed while the session store is unavailable")
