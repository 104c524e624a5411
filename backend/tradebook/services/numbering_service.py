# Overview: Human-readable invoice numbers; atomic allocation plus format and collision checks.

from __future__ import annotations

import re

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationFailedError
from ..extensions import db
from ..models import DocumentSequence, Invoice
from ..models.invoices import KIND_PURCHASE, KIND_PURCHASE_RETURN, KIND_SALE, KIND_SALE_RETURN


DOCUMENT_PREFIXES = {
    KIND_SALE: "SI",
    KIND_PURCHASE: "PI",
    KIND_SALE_RETURN: "SR",
    KIND_PURCHASE_RETURN: "PR",
}

SEQUENCE_PAD = 6


class NumberingService:
    """
    Issues <PREFIX><YYYY><NNNNNN> numbers (e.g. SI2026000001).

    Allocation runs inside the caller's transaction: the counter row is bumped
    with a single UPDATE ... SET next_number = next_number + 1, which takes a
    write lock on the row, so concurrent issuers never share a number.
    """

    def pattern_for(self, kind: str) -> re.Pattern:
        prefix = DOCUMENT_PREFIXES.get(kind)
        if prefix is None:
            raise ValidationFailedError(f"Unknown document kind: {kind}")
        return re.compile(rf"^{prefix}\d{{4}}\d{{{SEQUENCE_PAD}}}$")

    def next_number(self, kind: str, year: int) -> str:
        prefix = DOCUMENT_PREFIXES.get(kind)
        if prefix is None:
            raise ValidationFailedError(f"Unknown document kind: {kind}")

        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.document_type == kind,
                DocumentSequence.year == year,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=kind, year=year)
                .scalar()
            )
            next_num = current - 1
        else:
            seq = DocumentSequence(document_type=kind, year=year, next_number=2)
            try:
                with db.session.begin_nested():
                    db.session.add(seq)
                next_num = 1
            except IntegrityError:
                # another writer created the row first
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                current = (
                    db.session.query(DocumentSequence.next_number)
                    .filter_by(document_type=kind, year=year)
                    .scalar()
                )
                next_num = current - 1

        return f"{prefix}{year:04d}{next_num:0{SEQUENCE_PAD}d}"

    def validate(self, kind: str, number: str) -> str:
        """Format and collision check for a caller-supplied number."""
        number = (number or "").strip().upper()
        if not self.pattern_for(kind).match(number):
            raise ValidationFailedError(
                f"Invalid document number format for {kind}: {number}",
                details={"document_number": number, "expected_prefix": DOCUMENT_PREFIXES[kind]},
            )
        if db.session.query(Invoice.id).filter_by(document_number=number).first():
            raise ValidationFailedError(
                f"Document number {number} already exists",
                details={"document_number": number},
            )
        return number

    def issue(self, kind: str, year: int) -> str:
        """Next free number, skipping any already taken by a manual entry."""
        while True:
            number = self.next_number(kind, year)
            if not db.session.query(Invoice.id).filter_by(document_number=number).first():
                return number
