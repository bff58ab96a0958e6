"""Paywall store — the single write path for reading/order/event state.

Every state change in the paywall goes through PaywallStore.transaction().
A transaction:

- takes one in-process lock per scope key (e.g. "order-key:<sha>",
  "reading:<id>"), always in sorted order so two transactions can never
  wait on each other,
- runs the caller's mutation against the SQLAlchemy session,
- commits on success, rolls back on any failure.

Writers in the same scope are therefore admitted one at a time against a
fully committed prior state. Unrelated scopes run concurrently. Across
processes the unique constraints on orders.idempotency_key,
orders.stripe_session_id and stripe_events.stripe_event_id reject the
losing writer, which surfaces as ConflictError.

Readers never take locks; they query committed rows directly.
"""

import logging
import threading
import weakref
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from soulcross.errors import ConflictError, PersistenceError

logger = logging.getLogger(__name__)


class ScopeLocks:
    """Registry of re-entrant locks keyed by scope string.

    Locks are held in a WeakValueDictionary so scopes nobody is waiting on
    are garbage-collected instead of accumulating forever.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def get(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys):
        """Acquire the locks for every key (deduplicated, sorted)."""
        locks = [self.get(key) for key in sorted(set(keys))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class PaywallStore:
    """Transactional store bound to a Flask-SQLAlchemy instance."""

    def __init__(self, db, app=None):
        self.db = db
        self.locks = ScopeLocks()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.extensions["paywall_store"] = self

    @contextmanager
    def transaction(self, *scope):
        """Run a mutation unit under the given scope keys.

        Usage:
            with store.transaction(f"order:{order_id}") as session:
                order = session.get(Order, order_id)
                order.status = "paid"

        Raises ConflictError on a unique-constraint violation and
        PersistenceError on any other database failure. PaywallErrors
        raised by the mutation itself propagate unchanged. In every failure
        case the session is rolled back.
        """
        session = self.db.session
        with self.locks.hold(*scope):
            try:
                yield session
                session.commit()
            except IntegrityError as e:
                session.rollback()
                logger.warning(f"Store conflict in scope {scope}: {e.orig}")
                raise ConflictError("Concurrent write rejected, please retry") from e
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Store write failed in scope {scope}: {e}", exc_info=True)
                raise PersistenceError("Could not persist changes") from e
            except Exception:
                session.rollback()
                raise
