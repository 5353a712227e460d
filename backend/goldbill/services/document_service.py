# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(document_type: str, year: int) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, year=year)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    year: int,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a type/year, e.g. BILL-2026-000042.

    Runs inside the caller's transaction and does not commit: if the sale
    rolls back, the number is released with it. The UPDATE takes the row
    lock, so concurrent sales serialize on the counter and never share a number.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not prefix:
        raise DocumentSequenceError("prefix is required")

    next_num = _bump(document_type, year)
    if next_num is None:
        # First document of the year: create the counter under a savepoint so a
        # concurrent creator only costs us the savepoint, not the whole sale.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, year=year, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(document_type, year)
            if next_num is None:
                raise DocumentSequenceError(f"could not allocate {document_type} number for {year}")

    return f"{prefix}-{year}-{next_num:0{pad}d}"
