"""SQLAlchemy backed lead store."""
from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, selectinload, sessionmaker

from ..errors import StoreError
from ..merge import contact_keys, dedup_key, normalise_company, normalise_website
from ..models import ContactPerson, DedupKey, ImportBatch, LeadAggregate

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class LeadRecord(Base):
    """Row of the ``leads`` table; one per company aggregate."""

    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    website: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    company_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    website_key: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    country: Mapped[Optional[str]] = mapped_column(String(128))
    address: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="new")
    owner: Mapped[Optional[str]] = mapped_column(String(64))
    group_id: Mapped[Optional[str]] = mapped_column(String(64))
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="imported")
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    imported_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    imported_by: Mapped[Optional[str]] = mapped_column(String(64))
    file_name: Mapped[Optional[str]] = mapped_column(String(255))
    total_count: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    contacts: Mapped[List["ContactRecord"]] = relationship(
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="ContactRecord.position",
    )


class ContactRecord(Base):
    """Contact person attached to a lead."""

    __tablename__ = "lead_contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[str] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_name: Mapped[Optional[str]] = mapped_column(String(128))
    last_name: Mapped[Optional[str]] = mapped_column(String(128))
    designation: Mapped[Optional[str]] = mapped_column(String(128))
    emails: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    phones: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    lead: Mapped[LeadRecord] = relationship(back_populates="contacts")


class SQLAlchemyLeadStore:
    """Transactional store persisting aggregates through SQLAlchemy.

    Writes issued inside :meth:`batch` share one session and commit together;
    writes outside a batch commit individually.
    """

    transactional = True

    def __init__(self, engine: Engine, *, create_tables: bool = True) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(engine, expire_on_commit=False)
        self._local = threading.local()
        if create_tables:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, **engine_kwargs: Any) -> "SQLAlchemyLeadStore":
        return cls(create_engine(url, **engine_kwargs))

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def batch(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return
        session = self._session_factory()
        self._local.session = session
        try:
            with session.begin():
                yield
        except SQLAlchemyError as exc:
            raise StoreError(f"Lead store transaction failed: {exc}") from exc
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        current = getattr(self._local, "session", None)
        if current is not None:
            try:
                yield current
            except SQLAlchemyError as exc:
                raise StoreError(f"Lead store operation failed: {exc}") from exc
            return
        try:
            with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(f"Lead store operation failed: {exc}") from exc

    def get(self, aggregate_id: str) -> Optional[LeadAggregate]:
        with self._session() as session:
            record = session.get(LeadRecord, aggregate_id, options=[selectinload(LeadRecord.contacts)])
            return _to_aggregate(record) if record is not None else None

    def find_by_keys(self, keys: Iterable[DedupKey]) -> Dict[DedupKey, LeadAggregate]:
        wanted = set(keys)
        if not wanted:
            return {}
        companies = sorted({company for company, _ in wanted})
        statement = (
            select(LeadRecord)
            .where(LeadRecord.company_key.in_(companies))
            .options(selectinload(LeadRecord.contacts))
            .order_by(LeadRecord.created_at, LeadRecord.id)
        )
        found: Dict[DedupKey, LeadAggregate] = {}
        with self._session() as session:
            for record in session.scalars(statement):
                key = (record.company_key, record.website_key)
                if key in wanted and key not in found:
                    found[key] = _to_aggregate(record)
        return found

    def insert_aggregate(self, aggregate: LeadAggregate) -> str:
        aggregate_id = aggregate.id or uuid.uuid4().hex
        company_key, website_key = dedup_key(aggregate.company_name, aggregate.website)
        batch = aggregate.import_batch
        record = LeadRecord(
            id=aggregate_id,
            company_name=aggregate.company_name,
            website=aggregate.website or "",
            company_key=company_key,
            website_key=website_key,
            country=aggregate.country,
            address=aggregate.address,
            notes=aggregate.notes,
            status=aggregate.status,
            owner=aggregate.owner,
            group_id=aggregate.group_id,
            source=aggregate.source,
            batch_id=batch.batch_id if batch else None,
            imported_at=batch.imported_at if batch else None,
            imported_by=batch.imported_by if batch else None,
            file_name=batch.file_name if batch else None,
            total_count=batch.total_count if batch else None,
            contacts=[_to_contact_record(contact, index) for index, contact in enumerate(aggregate.contact_persons)],
        )
        with self._session() as session:
            session.add(record)
            session.flush()
        LOGGER.debug("Inserted aggregate %s (%s)", aggregate_id, aggregate.company_name)
        return aggregate_id

    def delete_aggregate(self, aggregate_id: str) -> None:
        with self._session() as session:
            session.delete(self._require(session, aggregate_id))
            session.flush()

    def append_contacts(self, aggregate_id: str, contacts: Sequence[ContactPerson]) -> None:
        with self._session() as session:
            record = self._require(session, aggregate_id)
            start = len(record.contacts)
            for offset, contact in enumerate(contacts):
                record.contacts.append(_to_contact_record(contact, start + offset))
            session.flush()

    def remove_contacts(self, aggregate_id: str, contacts: Sequence[ContactPerson]) -> None:
        targets = [contact_keys(contact) for contact in contacts]
        with self._session() as session:
            record = self._require(session, aggregate_id)
            for keys in targets:
                for existing in reversed(list(record.contacts)):
                    if contact_keys(_to_contact(existing)) == keys:
                        record.contacts.remove(existing)
                        break
            session.flush()

    def search_by_company(self, name: Optional[str] = None, website: Optional[str] = None) -> List[LeadAggregate]:
        statement = select(LeadRecord).options(selectinload(LeadRecord.contacts)).order_by(LeadRecord.created_at)
        if name:
            statement = statement.where(LeadRecord.company_key == normalise_company(name))
        if website:
            statement = statement.where(LeadRecord.website_key == normalise_website(website))
        with self._session() as session:
            return [_to_aggregate(record) for record in session.scalars(statement)]

    @staticmethod
    def _require(session: Session, aggregate_id: str) -> LeadRecord:
        record = session.get(LeadRecord, aggregate_id)
        if record is None:
            raise StoreError(f"Aggregate {aggregate_id} does not exist")
        return record


def _to_contact_record(contact: ContactPerson, position: int) -> ContactRecord:
    return ContactRecord(
        position=position,
        first_name=contact.first_name,
        last_name=contact.last_name,
        designation=contact.designation,
        emails=list(contact.emails),
        phones=list(contact.phones),
    )


def _to_contact(record: ContactRecord) -> ContactPerson:
    return ContactPerson(
        first_name=record.first_name,
        last_name=record.last_name,
        designation=record.designation,
        emails=list(record.emails or []),
        phones=list(record.phones or []),
    )


def _to_aggregate(record: LeadRecord) -> LeadAggregate:
    batch = None
    if record.batch_id:
        batch = ImportBatch(
            batch_id=record.batch_id,
            imported_at=record.imported_at or record.created_at,
            imported_by=record.imported_by,
            file_name=record.file_name,
            total_count=record.total_count,
        )
    return LeadAggregate(
        id=record.id,
        company_name=record.company_name,
        website=record.website,
        country=record.country,
        address=record.address,
        notes=record.notes,
        status=record.status,
        contact_persons=[_to_contact(contact) for contact in record.contacts],
        owner=record.owner,
        group_id=record.group_id,
        source=record.source,
        import_batch=batch,
    )


__all__ = ["Base", "ContactRecord", "LeadRecord", "SQLAlchemyLeadStore"]
