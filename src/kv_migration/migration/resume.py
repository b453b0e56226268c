"""
Resumable progress for migrations.

``ResumeState`` records which keys have been copied completely in the
current run. ``ResumeStore`` persists it to the resume database so an
interrupted run can restart without copying those keys again.
"""

import hashlib
import threading
from datetime import UTC, datetime

from sqlalchemy import delete, desc, select

from kv_migration.client.exceptions import CheckpointError, StateError
from kv_migration.migration.database import create_session_factory, get_session, init_database
from kv_migration.migration.models import ProcessedKey, ResumeSession
from kv_migration.utils.logging import get_logger

logger = get_logger(__name__)


class ResumeState:
    """Thread-safe set of fully migrated keys.

    Keys are only ever added. Membership checks are O(1) and may be made
    from any number of workers; one lock serializes readers as well as
    writers.
    """

    def __init__(
        self,
        total_keys: int = 0,
        processed_keys: set[str] | None = None,
        start_time: datetime | None = None,
        last_key: str | None = None,
    ):
        self._lock = threading.RLock()
        self._processed: set[str] = set(processed_keys or ())
        self._total_keys = total_keys
        self.start_time = start_time or datetime.now(UTC)
        self.last_key = last_key

    @property
    def total_keys(self) -> int:
        with self._lock:
            return self._total_keys

    @total_keys.setter
    def total_keys(self, value: int) -> None:
        with self._lock:
            self._total_keys = value

    def mark_processed(self, key: str) -> bool:
        """Record a completed key.

        Returns:
            True if the key was not already recorded
        """
        with self._lock:
            if key in self._processed:
                return False
            self._processed.add(key)
            self.last_key = key
            return True

    def is_processed(self, key: str) -> bool:
        with self._lock:
            return key in self._processed

    def get_processed_count(self) -> int:
        with self._lock:
            return len(self._processed)

    def processed_keys(self) -> set[str]:
        """Copy of the recorded keys."""
        with self._lock:
            return set(self._processed)


def _checksum(processed_count: int, last_key: str | None) -> str:
    payload = f"{processed_count}:{last_key or ''}"
    return hashlib.sha256(payload.encode("utf-8", "surrogateescape")).hexdigest()


class ResumeStore:
    """
    Persists ResumeState in the resume database.

    Usage:
        store = ResumeStore("sqlite:///migration_resume.db")
        state = store.load()
        ...
        store.save(state)   # periodically and at shutdown
        store.clear()       # after a fully successful run
    """

    def __init__(self, database_url: str):
        """
        Initialize resume store.

        Args:
            database_url: SQLAlchemy URL of the resume database

        Raises:
            ConfigurationError: If the database cannot be initialized
        """
        self.database_url = database_url
        self.engine = init_database(database_url)
        self._session_factory = create_session_factory(self.engine)
        self._lock = threading.Lock()
        self._session_id: int | None = None
        self._saved: set[str] = set()

    def load(self) -> ResumeState:
        """
        Load the most recent saved state.

        Returns a fresh state when nothing was saved or the saved data fails
        its integrity check.

        Raises:
            CheckpointError: If the database cannot be read
        """
        with self._lock:
            try:
                with get_session(self._session_factory) as session:
                    row = session.scalars(
                        select(ResumeSession).order_by(desc(ResumeSession.id)).limit(1)
                    ).first()
                    if row is None:
                        return ResumeState()

                    keys = set(
                        session.scalars(
                            select(ProcessedKey.key).where(ProcessedKey.session_id == row.id)
                        ).all()
                    )

                    if row.checksum != _checksum(len(keys), row.last_key):
                        logger.warning(
                            "resume_state_invalid",
                            session_id=row.id,
                            processed_keys=len(keys),
                            reason="checksum mismatch",
                        )
                        return ResumeState()

                    self._session_id = row.id
                    self._saved = set(keys)
                    started = row.started_at
                    if started.tzinfo is None:
                        started = started.replace(tzinfo=UTC)

                    logger.info(
                        "resume_state_loaded",
                        session_id=row.id,
                        processed_keys=len(keys),
                        total_keys=row.total_keys,
                    )
                    return ResumeState(
                        total_keys=row.total_keys,
                        processed_keys=keys,
                        start_time=started,
                        last_key=row.last_key,
                    )
            except StateError as e:
                raise CheckpointError(f"Failed to load resume state: {e}") from e

    def save(self, state: ResumeState) -> int:
        """
        Persist newly processed keys and session metadata.

        Args:
            state: State to save

        Returns:
            Number of keys written by this call

        Raises:
            CheckpointError: If the state cannot be written
        """
        with self._lock:
            keys = state.processed_keys()
            new_keys = keys - self._saved

            try:
                with get_session(self._session_factory) as session:
                    row = None
                    if self._session_id is not None:
                        row = session.get(ResumeSession, self._session_id)
                    if row is None:
                        row = ResumeSession(started_at=state.start_time)
                        session.add(row)
                        session.flush()
                        self._session_id = row.id

                    row.total_keys = state.total_keys
                    row.last_key = state.last_key
                    row.checksum = _checksum(len(keys), state.last_key)
                    session.add_all(ProcessedKey(session_id=row.id, key=key) for key in new_keys)
            except StateError as e:
                logger.error("resume_state_save_failed", error=str(e))
                raise CheckpointError(f"Failed to save resume state: {e}") from e

            self._saved |= new_keys
            logger.debug(
                "resume_state_saved",
                session_id=self._session_id,
                processed_keys=len(keys),
                new_keys=len(new_keys),
            )
            return len(new_keys)

    def clear(self) -> None:
        """
        Remove all saved state.

        Raises:
            CheckpointError: If the state cannot be removed
        """
        with self._lock:
            try:
                with get_session(self._session_factory) as session:
                    session.execute(delete(ProcessedKey))
                    session.execute(delete(ResumeSession))
            except StateError as e:
                raise CheckpointError(f"Failed to clear resume state: {e}") from e

            self._session_id = None
            self._saved = set()
            logger.info("resume_state_cleared", database_url=self.database_url)

    def close(self) -> None:
        self.engine.dispose()
