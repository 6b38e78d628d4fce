"""Record store: persistence of identity records.

Two backends implement :class:`RecordStore`.  :class:`SqlRecordStore` keeps
records in a relational table through SQLAlchemy and relies on the table's
unique constraint to reject duplicate ID numbers.  :class:`InMemoryRecordStore`
keeps them in a dictionary guarded by a lock, which is enough for tests and
demos.  Neither exposes update or delete operations.
"""

from __future__ import annotations

import abc
import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import DuplicateKeyError, PersistenceError, ValidationFailedError
from .models import Base, IdentityRecordRow
from .schemas import IdentityRecord, RecordInput

logger = logging.getLogger(__name__)


def _prepare(record_input: RecordInput) -> RecordInput:
    cleaned = record_input.cleaned()
    missing = cleaned.missing_fields()
    if missing:
        raise ValidationFailedError(missing)
    return cleaned


class RecordStore(abc.ABC):
    """Create/read access to saved identity records."""

    def open(self) -> None:
        """Acquire resources; called once at application startup."""

    def close(self) -> None:
        """Release resources; called once at application shutdown."""

    @abc.abstractmethod
    def find_by_id_number(self, id_number: str) -> Optional[IdentityRecord]:
        """Return the record with exactly this ID number, if any."""

    @abc.abstractmethod
    def insert(self, record_input: RecordInput) -> IdentityRecord:
        """Persist a new record.

        Raises :class:`ValidationFailedError` when a required field is blank
        and :class:`DuplicateKeyError` when the ID number is already taken.
        """

    @abc.abstractmethod
    def list_recent(self, limit: int) -> List[IdentityRecord]:
        """Return at most ``limit`` records, most recently created first."""

    @abc.abstractmethod
    def list_all(self) -> List[IdentityRecord]:
        """Return every record, most recently created first."""

    @abc.abstractmethod
    def count(self) -> int:
        """Return the number of stored records."""


class SqlRecordStore(RecordStore):
    """Record store backed by a SQLAlchemy engine."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self._engine = self._build_engine(url, echo)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)

    @staticmethod
    def _build_engine(url: str, echo: bool) -> Engine:
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
                # A single shared connection keeps the in-memory database alive.
                kwargs["poolclass"] = StaticPool
            return create_engine(url, echo=echo, **kwargs)
        return create_engine(url, echo=echo, pool_pre_ping=True)

    @property
    def engine(self) -> Engine:
        return self._engine

    def open(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to prepare the record table: {exc}") from exc
        logger.info("Record store ready (%s)", self._engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        self._engine.dispose()
        logger.info("Record store closed")

    def _session(self) -> Session:
        return self._sessions()

    def find_by_id_number(self, id_number: str) -> Optional[IdentityRecord]:
        try:
            with self._session() as session:
                row = session.scalars(
                    select(IdentityRecordRow).where(IdentityRecordRow.id_number == id_number)
                ).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to look up ID number {id_number!r}: {exc}") from exc
        return IdentityRecord.model_validate(row) if row is not None else None

    def insert(self, record_input: RecordInput) -> IdentityRecord:
        cleaned = _prepare(record_input)
        row = IdentityRecordRow(
            full_name=cleaned.full_name,
            id_number=cleaned.id_number,
            date_of_birth=cleaned.date_of_birth,
            expiry_date=cleaned.expiry_date,
            address=cleaned.address,
            photo_url=None,
        )

        try:
            with self._session() as session:
                with session.begin():
                    session.add(row)
                # Reload so values come back exactly as the database stores them.
                session.refresh(row)
        except IntegrityError as exc:
            logger.info("Rejected duplicate ID number %s", cleaned.id_number)
            raise DuplicateKeyError(
                cleaned.id_number, self.find_by_id_number(cleaned.id_number)
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save record: {exc}") from exc

        logger.info("Saved identity record %s", row.id)
        return IdentityRecord.model_validate(row)

    def _list(self, limit: Optional[int]) -> List[IdentityRecord]:
        statement = select(IdentityRecordRow).order_by(
            IdentityRecordRow.created_at.desc(), IdentityRecordRow.id.desc()
        )
        if limit is not None:
            statement = statement.limit(max(limit, 0))
        try:
            with self._session() as session:
                rows = session.scalars(statement).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list records: {exc}") from exc
        return [IdentityRecord.model_validate(row) for row in rows]

    def list_recent(self, limit: int) -> List[IdentityRecord]:
        return self._list(limit)

    def list_all(self) -> List[IdentityRecord]:
        return self._list(None)

    def count(self) -> int:
        try:
            with self._session() as session:
                return session.scalar(select(func.count()).select_from(IdentityRecordRow)) or 0
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to count records: {exc}") from exc


class InMemoryRecordStore(RecordStore):
    """Record store holding records in process memory."""

    def __init__(self) -> None:
        self._records: Dict[str, IdentityRecord] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def find_by_id_number(self, id_number: str) -> Optional[IdentityRecord]:
        with self._lock:
            return self._records.get(id_number)

    def insert(self, record_input: RecordInput) -> IdentityRecord:
        cleaned = _prepare(record_input)
        with self._lock:
            existing = self._records.get(cleaned.id_number)
            if existing is not None:
                raise DuplicateKeyError(cleaned.id_number, existing)

            record = IdentityRecord(
                id=next(self._ids),
                full_name=cleaned.full_name,
                id_number=cleaned.id_number,
                date_of_birth=cleaned.date_of_birth,
                expiry_date=cleaned.expiry_date,
                address=cleaned.address,
                photo_url=None,
                created_at=datetime.now(timezone.utc),
            )
            self._records[record.id_number] = record
        return record

    def _ordered(self) -> List[IdentityRecord]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda rec: (rec.created_at, rec.id), reverse=True)

    def list_recent(self, limit: int) -> List[IdentityRecord]:
        return self._ordered()[: max(limit, 0)]

    def list_all(self) -> List[IdentityRecord]:
        return self._ordered()

    def count(self) -> int:
        with self._lock:
            return len(self._records)


def build_store(kind: str, database_url: str) -> RecordStore:
    """Construct the record store selected by configuration."""

    if kind == "memory":
        return InMemoryRecordStore()
    if kind == "sql":
        return SqlRecordStore(database_url)
    raise ValueError(f"Unknown record store {kind!r}; expected 'sql' or 'memory'.")
