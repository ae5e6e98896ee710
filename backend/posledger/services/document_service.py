# Overview: Allocation of human-readable invoice and credit-note numbers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


INVOICE_PREFIX = "INV"
CREDIT_NOTE_PREFIX = "CN"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def period_prefix(kind: str, when: datetime | None = None) -> str:
    """"INV" -> "INV-202610" for the month of `when` (default now)."""
    when = when or utcnow()
    return f"{kind}-{when:%Y%m}"


def next_document_number(*, prefix: str, pad: int = 4) -> str:
    """
    Atomically allocate the next document number for a prefix.

    The counter row is bumped with a single UPDATE so concurrent callers
    never receive the same number. The first allocation for a prefix
    inserts the row; if another writer inserted it first, the unique
    constraint fires and the UPDATE path is retried.

    Runs inside the caller's transaction; the caller commits.
    """
    if not prefix:
        raise DocumentSequenceError("prefix is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.prefix == prefix)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _allocated_number(prefix)
    else:
        seq = DocumentSequence(prefix=prefix, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _allocated_number(prefix)

    return f"{prefix}-{next_num:0{pad}d}"


def _allocated_number(prefix: str) -> int:
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(prefix=prefix)
        .scalar()
    )
    return current - 1
