"""Batch persistence: the repositories and the unit of work batch writes run in.

Every write goes through a ``BatchUnitOfWork``::

    with BatchUnitOfWork(policy):
        repo = current_domain.repository_for(Batch)
        repo.lock_zone(zone)
        batch = repo.find_candidate(zone, weight)
        ...

Leaving the block commits through protean's unit of work, which appends the
events raised by every batch written to the event store and hands them to the
event handlers. An exception rolls the transaction back and runs the
registered compensations in reverse order. Locks taken inside the block are
held until it ends.

On PostgreSQL the zone critical section is a transaction-scoped advisory lock
and rows are locked with ``SELECT ... FOR UPDATE [SKIP LOCKED]``. The
in-memory and SQLite providers have no row locks, so their transactions run
one at a time.
"""

import threading
from collections.abc import Callable
from datetime import UTC

import structlog
from protean import UnitOfWork
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, TransactionError
from protean.utils.globals import _uow_context_stack
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError

from dispatch.batch.batch import WEIGHT_EPSILON, Batch, BatchStatus
from dispatch.collaborators.ports import OrderRecord, approved_weight
from dispatch.domain import dispatch
from dispatch.errors import BatchConflict, DispatchError, RepositoryUnavailable, TransientContention
from dispatch.settings import BatchingPolicy
from dispatch.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

# SQLSTATE 55P03: lock_not_available
_LOCK_NOT_AVAILABLE = "55P03"

# Store-wide transaction locks for providers without row locks, by provider name
store_locks = KeyedLocks()

# Batch rows held by a transaction until its events are published, by batch id
row_locks = KeyedLocks()

# The in-memory event store takes one append at a time
_commit_lock = threading.Lock()


def candidate_order(incoming_weight: float):
    """Sort key: least remaining capacity after the order, then oldest."""

    def key(batch: Batch):
        return (batch.max_capacity - batch.total_weight - incoming_weight, batch.created_at)

    return key


def _translate(exc: BaseException) -> DispatchError | None:
    cause = exc.__cause__ if isinstance(exc, TransactionError) and exc.__cause__ else exc
    if isinstance(cause, OperationalError) and getattr(cause.orig, "pgcode", None) == _LOCK_NOT_AVAILABLE:
        return TransientContention("Lock wait timed out", error=str(cause))
    if isinstance(cause, (DBAPIError, TransactionError)):
        return RepositoryUnavailable("Batch storage failed", error=str(cause))
    return None


def _aware(batch: Batch) -> Batch:
    # SQL providers hand timestamps back without a zone; they are stored in UTC
    naive = {
        name: value.replace(tzinfo=UTC)
        for name in ("created_at", "updated_at")
        if (value := getattr(batch, name)) is not None and value.tzinfo is None
    }
    if naive:
        for name, value in naive.items():
            setattr(batch, name, value)
        batch.state_.mark_retrieved()
    return batch


def _active_uow() -> "BatchUnitOfWork":
    uow = _uow_context_stack.top
    if not isinstance(uow, BatchUnitOfWork):
        raise RuntimeError("Batch writes must run inside a BatchUnitOfWork")
    return uow


class BatchUnitOfWork(UnitOfWork):
    """One batch transaction.

    It commits on its own even when another unit of work is in progress, such
    as the one a command handler runs in: enclosing units are set aside until
    this one ends.
    """

    def __init__(self, policy: BatchingPolicy):
        super().__init__()
        self.policy = policy
        self.zones: set[str] = set()
        self.rows: set[str] = set()
        # Every batch locked or opened here, removed ones included
        self.batches: dict[str, Batch] = {}
        self._enclosing: list[UnitOfWork] = []
        self._compensations: list[Callable[[], None]] = []
        self._releases: list[Callable[[], None]] = []

    def start(self) -> None:
        while _uow_context_stack.top is not None:
            self._enclosing.append(_uow_context_stack.pop())
        super().start()
        try:
            self.domain.repository_for(Batch).begin(self)
        except Exception as exc:
            self.rollback()
            translated = _translate(exc)
            if translated is None:
                raise
            raise translated from exc

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        except Exception as exc:
            translated = _translate(exc)
            if translated is None:
                raise
            raise translated from exc

        translated = _translate(exc_val) if exc_val is not None else None
        if translated is not None:
            raise translated from exc_val
        return False

    def on_rollback(self, hook: Callable[[], None]) -> None:
        """Register a compensation to run if the transaction rolls back."""
        self._compensations.append(hook)

    def on_release(self, release: Callable[[], None]) -> None:
        """Register a lock release to run once the transaction has ended."""
        self._releases.append(release)

    def hold(self, batch_id: str) -> None:
        if not row_locks.acquire(batch_id, timeout=self.policy.row_lock_timeout):
            raise TransientContention("Timed out waiting for batch lock", batch_id=batch_id)
        self.rows.add(batch_id)
        self.on_release(lambda: row_locks.release(batch_id))

    def track(self, batch: Batch) -> Batch:
        self.batches[str(batch.id)] = batch
        self._add_to_identity_map(batch)
        return batch

    def get_session(self, provider_name):
        if provider_name == Batch.meta_.provider:
            return super().get_session(provider_name)
        # Other providers (the event store) are read as last committed
        return self.domain.providers[provider_name].get_connection()

    def commit(self) -> None:
        # Queries replace tracked instances with fresh copies; events live on ours
        for batch in self.batches.values():
            self._add_to_identity_map(batch)

        with _commit_lock:
            try:
                super().commit()
            except ExpectedVersionError as exc:
                # Batch rows are committed at this point, only the event append was refused
                logger.error("batch_events_not_recorded", batches=sorted(self.batches), error=str(exc))
                self._reset()
            except Exception:
                if _uow_context_stack.top is not self:
                    _uow_context_stack.push(self)
                raise

    def rollback(self) -> None:
        compensations, self._compensations = self._compensations, []
        for hook in reversed(compensations):
            try:
                hook()
            except Exception:
                logger.error("rollback_compensation_failed", exc_info=True)
        super().rollback()

    def _reset(self) -> None:
        super()._reset()
        releases, self._releases = self._releases, []
        for release in reversed(releases):
            release()
        self._compensations.clear()
        self.zones.clear()
        self.rows.clear()
        self.batches.clear()

        enclosing, self._enclosing = self._enclosing, []
        for uow in reversed(enclosing):
            _uow_context_stack.push(uow)


@dispatch.repository(part_of=Batch)
class BatchRepository:
    """Batch queries and locked writes.

    Serves the providers without row locks: ``begin`` takes a store-wide lock,
    so every row read inside a transaction is as good as locked.
    """

    def begin(self, uow: BatchUnitOfWork) -> None:
        key = self._provider.name
        if not store_locks.acquire(key, timeout=uow.policy.zone_lock_timeout):
            raise TransientContention("Timed out waiting for the batch store", provider=key)
        uow.on_release(lambda: store_locks.release(key))

    # -------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------
    def lock_zone(self, zone: str) -> None:
        """Enter the zone's find-or-create critical section."""
        _active_uow().zones.add(zone)

    def _lock_row(self, uow: BatchUnitOfWork, batch_id: str, wait: bool) -> bool:
        return True

    def lock(self, batch_id: str, wait: bool = False) -> Batch | None:
        """Lock a batch row and return its current state.

        Without ``wait`` a row locked elsewhere is skipped and None is returned.
        With ``wait`` the call blocks up to the row lock timeout and then
        raises TransientContention.
        """
        uow = _active_uow()
        batch_id = str(batch_id)
        if batch_id not in uow.rows:
            if not self._lock_row(uow, batch_id, wait):
                if wait:
                    raise TransientContention("Timed out waiting for batch lock", batch_id=batch_id)
                return None
            uow.hold(batch_id)

        batch = self._load(uow, batch_id)
        if batch is None and wait:
            raise ObjectNotFoundError(f"Batch with id {batch_id} does not exist")
        return batch

    def _load(self, uow: BatchUnitOfWork, batch_id: str) -> Batch | None:
        cached = uow.batches.get(batch_id)
        if cached is not None:
            return None if cached.state_.is_destroyed else cached
        try:
            batch = self.get(batch_id)
        except ObjectNotFoundError:
            return None
        return uow.track(batch)

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def get(self, identifier) -> Batch:
        return _aware(super().get(identifier))

    def list_batches(self, zone: str | None = None, statuses: list[str] | None = None) -> list[Batch]:
        """Batches oldest first, read without locking.

        Inside a transaction, batches it holds come back as its own instances.
        """
        query = self.query
        if zone is not None:
            query = query.filter(zone=zone)
        if statuses is not None:
            query = query.filter(status__in=list(statuses))
        batches = query.order_by(["created_at", "id"]).limit(None).all().items

        uow = _uow_context_stack.top
        if not isinstance(uow, BatchUnitOfWork):
            return [_aware(batch) for batch in batches]

        listed = []
        for batch in batches:
            cached = uow.batches.get(str(batch.id))
            if cached is None:
                listed.append(_aware(batch))
            elif not cached.state_.is_destroyed:
                listed.append(uow.track(cached))
        return listed

    def find_candidate(self, zone: str, incoming_weight: float) -> Batch | None:
        """Lock and return the tightest-fitting pending batch of the zone.

        Rows locked by other transactions are skipped, never waited on.
        """
        candidates = [b for b in self.list_batches(zone, [BatchStatus.PENDING.value]) if b.fits(incoming_weight)]
        for candidate in sorted(candidates, key=candidate_order(incoming_weight)):
            batch = self.lock(str(candidate.id))
            if batch is None:
                continue
            if batch.status == BatchStatus.PENDING.value and batch.fits(incoming_weight):
                return batch
        return None

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def add(self, batch: Batch) -> Batch:
        """Persist a batch this transaction holds, or one it has just opened."""
        uow = _active_uow()
        batch_id = str(batch.id)
        if not batch.state_.is_persisted and batch_id not in uow.rows:
            uow.hold(batch_id)
        if batch_id not in uow.rows:
            raise RuntimeError(f"Batch {batch_id} must be locked before it is written")

        super().add(batch)
        uow.track(batch)
        return batch

    def remove(self, batch: Batch) -> None:
        uow = _active_uow()
        if str(batch.id) not in uow.rows:
            raise RuntimeError(f"Batch {batch.id} must be locked before it is removed")
        self._dao.delete(batch)
        uow.track(batch)

    def create_batch(self, zone: str, initial_weight: float, order_id: str | None = None) -> Batch:
        """Open a pending batch, refusing when an unlocked one could take the weight."""
        uow = _active_uow()
        for existing in self.list_batches(zone, [BatchStatus.PENDING.value]):
            if existing.fits(initial_weight) and self.lock(str(existing.id)) is not None:
                raise BatchConflict("An open batch can already take this order", zone=zone, batch_id=str(existing.id))

        batch = Batch.open(
            zone=zone,
            initial_weight=initial_weight,
            min_threshold=uow.policy.min_threshold,
            max_capacity=uow.policy.max_capacity,
            order_id=order_id,
        )
        return self.add(batch)

    def add_weight(self, batch: Batch, delta: float, order_id: str | None = None) -> Batch:
        """Increment a locked batch's weight; raises CapacityExceeded past the ceiling."""
        batch.add_weight(delta, order_id=order_id)
        return self.add(batch)

    def recompute_weight(self, batch: Batch, members: list[OrderRecord]) -> bool:
        """Set a locked batch's total to the approved weight of its member orders.

        Returns True when the stored total had drifted.
        """
        if not batch.correct_weight(approved_weight(members)):
            return False
        self.add(batch)
        return True


@dispatch.repository(part_of=Batch, database="postgresql")
class PostgresBatchRepository(BatchRepository):
    """Row and zone locks held by PostgreSQL itself.

    Transactions run READ COMMITTED with ``lock_timeout`` bounding every wait.
    Rows are still held in process after commit until their events are
    published, so event streams stay in order within one process.
    """

    def _session(self):
        return _active_uow().get_session(self._provider.name)

    def _set_lock_timeout(self, session, seconds: float) -> None:
        session.execute(text(f"SET LOCAL lock_timeout = '{int(seconds * 1000)}ms'"))

    def begin(self, uow: BatchUnitOfWork) -> None:
        session = uow.get_session(self._provider.name)
        session.connection(execution_options={"isolation_level": "READ COMMITTED"})
        self._set_lock_timeout(session, uow.policy.row_lock_timeout)

    def lock_zone(self, zone: str) -> None:
        uow = _active_uow()
        if zone in uow.zones:
            return
        session = self._session()
        self._set_lock_timeout(session, uow.policy.zone_lock_timeout)
        session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:zone))"), {"zone": zone})
        self._set_lock_timeout(session, uow.policy.row_lock_timeout)
        uow.zones.add(zone)

    def _lock_row(self, uow: BatchUnitOfWork, batch_id: str, wait: bool) -> bool:
        model = self._dao.database_model_cls
        query = self._session().query(model.id).filter(model.id == batch_id)
        row = query.with_for_update(skip_locked=not wait).first()
        # A missing row is nothing to wait for; loading it reports the absence
        return row is not None or wait

    def find_candidate(self, zone: str, incoming_weight: float) -> Batch | None:
        uow = _active_uow()
        model = self._dao.database_model_cls
        session = self._session()
        session.flush()
        row = (
            session.query(model.id)
            .filter(
                model.zone == zone,
                model.status == BatchStatus.PENDING.value,
                model.total_weight + incoming_weight <= model.max_capacity + WEIGHT_EPSILON,
            )
            .order_by(model.max_capacity - model.total_weight, model.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
            .first()
        )
        if row is None:
            return None

        batch_id = str(row.id)
        if batch_id not in uow.rows:
            uow.hold(batch_id)
        batch = self._load(uow, batch_id)
        if batch is None or not batch.fits(incoming_weight):
            return None
        return batch

    def add(self, batch: Batch) -> Batch:
        super().add(batch)
        # Sessions do not autoflush; later lookups must see the row
        self._session().flush()
        return batch

    def remove(self, batch: Batch) -> None:
        super().remove(batch)
        self._session().flush()
