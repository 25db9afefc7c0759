# Overview: Atomic document number allocation (order numbers, transfer references).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import FranchiseOpsError
from ..models import DocumentSequence


class DocumentSequenceError(FranchiseOpsError):
    """Raised when document sequence operations fail."""

    code = "document_sequence_error"


def _current_number(location_id: int, document_type: str, period: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(location_id=location_id, document_type=document_type, period=period)
        .scalar()
    )


def next_sequence_value(*, location_id: int, document_type: str, period: str = "") -> int:
    """
    Atomically allocate the next number for (location, type, period).

    Increment-first: the UPDATE takes the row lock before reading, so two
    callers can never observe the same value. Runs inside the caller's
    transaction; a rollback there also returns the number.
    """
    if not location_id:
        raise DocumentSequenceError("location_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.location_id == location_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current_number(location_id, document_type, period) - 1

    seq = DocumentSequence(location_id=location_id, document_type=document_type, period=period, next_number=2)
    try:
        with db.session.begin_nested():
            db.session.add(seq)
        return 1
    except IntegrityError:
        # Another transaction created the row first
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _current_number(location_id, document_type, period) - 1


def next_order_number(*, location_id: int, location_code: str | None, stamp: str, pad: int = 4) -> str:
    """<LOCATION_CODE>-<YYYYMMDD>-<NNNN>, sequence resets daily per location."""
    seq = next_sequence_value(location_id=location_id, document_type="ORDER", period=stamp)
    return f"{location_code or 'LOC'}-{stamp}-{seq:0{pad}d}"


def next_transfer_reference(*, location_id: int, pad: int = 6) -> str:
    seq = next_sequence_value(location_id=location_id, document_type="TRANSFER")
    return f"TRF-{location_id:03d}-{seq:0{pad}d}"


def next_invoice_number(*, location_id: int, pad: int = 6) -> str:
    seq = next_sequence_value(location_id=location_id, document_type="INVOICE")
    return f"INV-{location_id:03d}-{seq:0{pad}d}"
