"""Record sources.

The exporter only needs the `RecordSource` protocol. `SqliteRecordSource`
is the implementation shipped with the package: contacts, their data rows
and the call log in one SQLite file (or in memory).
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any, Protocol

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import EncodingFailed, StoreUnavailable
from .model import (
    Address,
    CallLogEntry,
    CallType,
    Category,
    Contact,
    OrderKey,
    Phone,
    Presentation,
    Selection,
    effective_order,
)
from .schema import Base, CallRow, ContactDataRow, ContactRow

logger = logging.getLogger(__name__)

_FETCH_BATCH = 64


class OrderedView(Protocol):
    def identity_at(self, ordinal: int) -> int | None: ...
    def __iter__(self) -> Iterator[tuple[int, str | None]]: ...
    def close(self) -> None: ...


class RecordCursor(Protocol):
    def __iter__(self) -> Iterator[Any]: ...
    def __next__(self) -> Any: ...
    def close(self) -> None: ...


class RecordSource(Protocol):
    def size(self, category: Category) -> int: ...
    def open_ordered(self, category: Category, order: OrderKey) -> OrderedView: ...
    def query(self, selection: Selection, order: OrderKey) -> RecordCursor: ...
    def phone_index(self) -> list[tuple[int, str | None, str]]: ...


@contextmanager
def _guard(action: str):
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("%s failed: %s", action, exc)
        raise StoreUnavailable(f"{action}: {exc}") from exc


# ── Statement helpers ──────────────────────────────────────────────────────────

def _where_category(stmt, category: Category):
    if category is Category.PHONEBOOK:
        return stmt.where(ContactRow.visible.is_(True))
    if category.call_type is not None:
        return stmt.where(CallRow.type == category.call_type)
    return stmt


def _order_by(stmt, category: Category, order: OrderKey):
    order = effective_order(category, order)
    if order is OrderKey.NEWEST_FIRST:
        return stmt.order_by(CallRow.id.desc())
    if order is OrderKey.ALPHABETICAL:
        return stmt.order_by(func.lower(ContactRow.display_name), ContactRow.id)
    return stmt.order_by(ContactRow.id)


def _where_selection(stmt, selection: Selection):
    column = ContactRow.id if selection.category is Category.PHONEBOOK else CallRow.id
    if selection.is_all:
        return stmt
    if selection.identities is not None:
        return stmt.where(column.in_(selection.identities))
    if selection.is_equality:
        return stmt.where(column == selection.low)
    return stmt.where(column >= selection.low, column <= selection.high)


# ── Row mapping ────────────────────────────────────────────────────────────────

def _contact_from_row(row: ContactRow) -> Contact:
    contact = Contact(
        identity=row.id,
        display_name=row.display_name,
        family=row.family,
        given=row.given,
        middle=row.middle,
        prefix=row.prefix,
        suffix=row.suffix,
        nickname=row.nickname,
        org=row.org,
        title=row.title,
        note=row.note,
        bday=row.bday,
        photo=row.photo,
        visible=bool(row.visible),
    )
    for item in row.data:
        if item.kind == "phone":
            contact.phones.append(Phone(item.value, item.label or "CELL"))
        elif item.kind == "email":
            contact.emails.append(item.value)
        elif item.kind == "address":
            contact.addresses.append(Address(**json.loads(item.value)))
        elif item.kind == "url":
            contact.urls.append(item.value)
        elif item.kind == "im":
            contact.ims.append(item.value)
        elif item.kind == "sip":
            contact.sips.append(item.value)
    return contact


def _call_from_row(row: CallRow) -> CallLogEntry:
    return CallLogEntry(
        identity=row.id,
        number=row.number,
        cached_name=row.cached_name,
        presentation=Presentation(row.presentation),
        call_type=CallType(row.type),
        timestamp=row.date or 0,
    )


def _data_rows(contact: Contact) -> list[ContactDataRow]:
    rows = [ContactDataRow(kind="phone", label=p.kind, value=p.number) for p in contact.phones]
    rows += [ContactDataRow(kind="email", value=e) for e in contact.emails]
    rows += [
        ContactDataRow(kind="address", label=a.kind, value=json.dumps(asdict(a)))
        for a in contact.addresses
    ]
    rows += [ContactDataRow(kind="url", value=u) for u in contact.urls]
    rows += [ContactDataRow(kind="im", value=u) for u in contact.ims]
    rows += [ContactDataRow(kind="sip", value=u) for u in contact.sips]
    return rows


# ── Cursors ────────────────────────────────────────────────────────────────────

class _SqlOrderedView:
    """Forward-only (identity, display name) rows in export order."""

    def __init__(self, session: Session, result):
        self._session = session
        self._result = result
        self._position = 0   # ordinal of the last row read

    def _read(self) -> tuple[int, str | None] | None:
        with _guard("read ordered view"):
            row = self._result.fetchone()
        if row is None:
            return None
        self._position += 1
        return row[0], row[1]

    def identity_at(self, ordinal: int) -> int | None:
        """Identity at 1-based ``ordinal``, or None past the end."""
        if ordinal <= self._position:
            raise ValueError(f"ordered view is forward-only (at {self._position}, asked {ordinal})")
        row = None
        while self._position < ordinal:
            row = self._read()
            if row is None:
                return None
        return row[0]

    def __iter__(self) -> Iterator[tuple[int, str | None]]:
        while (row := self._read()) is not None:
            yield row

    def close(self) -> None:
        self._result.close()
        self._session.close()


class _SqlRecordCursor:
    def __init__(self, session: Session, result, mapper):
        self._session = session
        self._result = result
        self._rows = iter(result)
        self._mapper = mapper

    def __iter__(self):
        return self

    def __next__(self):
        with _guard("read records"):
            row = next(self._rows, None)
        if row is None:
            raise StopIteration
        try:
            return self._mapper(row)
        except (TypeError, ValueError) as exc:
            raise EncodingFailed(f"record {row.id} is unreadable: {exc}") from exc

    def close(self) -> None:
        self._result.close()
        self._session.close()


# ── SQLite source ──────────────────────────────────────────────────────────────

class SqliteRecordSource:
    def __init__(self, path: str = ":memory:"):
        if path == ":memory:":
            self.engine = create_engine(
                "sqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(f"sqlite:///{path}", future=True)
        Base.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, autoflush=False)

    # ── reads ──────────────────────────────────────────────────────────────────

    def size(self, category: Category) -> int:
        table = ContactRow if category is Category.PHONEBOOK else CallRow
        stmt = _where_category(select(func.count(table.id)), category)
        with _guard(f"count {category.name}"), self._sessions() as session:
            return session.execute(stmt).scalar_one()

    def open_ordered(self, category: Category, order: OrderKey) -> _SqlOrderedView:
        if category is Category.PHONEBOOK:
            stmt = select(ContactRow.id, ContactRow.display_name)
        else:
            stmt = select(CallRow.id, CallRow.cached_name)
        stmt = _order_by(_where_category(stmt, category), category, order)
        session = self._sessions()
        try:
            with _guard(f"open {category.name} view"):
                result = session.execute(stmt)
        except StoreUnavailable:
            session.close()
            raise
        return _SqlOrderedView(session, result)

    def query(self, selection: Selection, order: OrderKey) -> _SqlRecordCursor:
        category = selection.category
        if category is Category.PHONEBOOK:
            stmt = select(ContactRow).options(selectinload(ContactRow.data))
            mapper = _contact_from_row
        else:
            stmt = select(CallRow)
            mapper = _call_from_row
        stmt = _where_selection(_where_category(stmt, category), selection)
        stmt = _order_by(stmt, category, order).execution_options(yield_per=_FETCH_BATCH)
        session = self._sessions()
        try:
            with _guard(f"query {category.name}"):
                rows = session.execute(stmt).scalars()
        except StoreUnavailable:
            session.close()
            raise
        return _SqlRecordCursor(session, rows, mapper)

    def phone_index(self) -> list[tuple[int, str | None, str]]:
        """(contact identity, display name, number) for visible contacts, by identity."""
        stmt = (
            select(ContactRow.id, ContactRow.display_name, ContactDataRow.value)
            .join(ContactDataRow, ContactDataRow.contact_id == ContactRow.id)
            .where(ContactRow.visible.is_(True), ContactDataRow.kind == "phone")
            .order_by(ContactRow.id, ContactDataRow.id)
        )
        with _guard("read phone index"), self._sessions() as session:
            return [(r[0], r[1], r[2]) for r in session.execute(stmt)]

    # ── writes ─────────────────────────────────────────────────────────────────

    def add_contact(self, contact: Contact) -> int:
        row = ContactRow(
            id=contact.identity or None,
            display_name=contact.display_name,
            family=contact.family,
            given=contact.given,
            middle=contact.middle,
            prefix=contact.prefix,
            suffix=contact.suffix,
            nickname=contact.nickname,
            org=contact.org,
            title=contact.title,
            note=contact.note,
            bday=contact.bday,
            photo=contact.photo,
            visible=contact.visible,
            data=_data_rows(contact),
        )
        with _guard("add contact"), self._sessions() as session:
            session.add(row)
            session.commit()
            return row.id

    def add_call(self, entry: CallLogEntry) -> int:
        row = CallRow(
            id=entry.identity or None,
            number=entry.number,
            cached_name=entry.cached_name,
            presentation=int(entry.presentation),
            type=int(entry.call_type),
            date=entry.timestamp,
        )
        with _guard("add call"), self._sessions() as session:
            session.add(row)
            session.commit()
            return row.id

    def remove_contact(self, identity: int) -> None:
        with _guard("remove contact"), self._sessions() as session:
            row = session.get(ContactRow, identity)
            if row is not None:
                session.delete(row)
                session.commit()

    def close(self) -> None:
        self.engine.dispose()
