# Overview: Double-entry posting, reversal and balance reads over the append-only ledger.

"""
Accounting Ledger

Every posting is a debit/credit pair of equal amount sharing a posting_group
and the document reference. Entries are only ever appended:
- cancellation appends swapped copies (reason=reversal, reverses_entry_id)
- returns post their own plan with debit and credit swapped

Nothing here commits; the pair is flushed together inside the caller's
transaction so both sides land or neither does.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from sqlalchemy import case, func

from ..errors import NotFoundError, ValidationFailedError
from ..extensions import db
from ..models import Account, LedgerEntry
from tradebook.time_utils import utcnow


DEBIT = "debit"
CREDIT = "credit"

REASON_REVERSAL = "reversal"


@dataclass(frozen=True)
class Posting:
    """One balanced pair to be written: Dr debit_account_id / Cr credit_account_id."""
    debit_account_id: int
    credit_account_id: int
    amount_cents: int
    reason: str
    memo: Optional[str] = None

    def swapped(self) -> "Posting":
        return Posting(
            debit_account_id=self.credit_account_id,
            credit_account_id=self.debit_account_id,
            amount_cents=self.amount_cents,
            reason=self.reason,
            memo=self.memo,
        )


class AccountingLedger:
    """Ledger component injected into the lifecycle manager and return engine."""

    def get_account(self, account_id: int) -> Account:
        account = db.session.get(Account, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found", details={"account_id": account_id})
        return account

    def account_by_code(self, code: str) -> Optional[Account]:
        return db.session.query(Account).filter_by(code=code).first()

    def require_active_accounts(self, account_ids: Iterable[int]) -> None:
        for account_id in set(account_ids):
            account = db.session.get(Account, account_id)
            if account is None or not account.is_active:
                raise ValidationFailedError(
                    f"Account {account_id} is missing or inactive",
                    details={"account_id": account_id},
                )

    def post_double_entry(
        self,
        debit_account_id: int,
        credit_account_id: int,
        amount_cents: int,
        memo: str | None,
        reference_kind: str,
        reference_id: int,
        *,
        reason: str,
        actor_user_id: int | None = None,
    ) -> tuple[LedgerEntry, LedgerEntry]:
        """Write one balanced debit/credit pair; returns (debit, credit)."""
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise ValidationFailedError(
                "Ledger amount must be a positive integer",
                details={"amount_cents": amount_cents},
            )
        if debit_account_id == credit_account_id:
            raise ValidationFailedError(
                "Debit and credit accounts must differ",
                details={"account_id": debit_account_id},
            )

        group = uuid.uuid4().hex
        now = utcnow()
        debit = LedgerEntry(
            account_id=debit_account_id,
            direction=DEBIT,
            amount_cents=amount_cents,
            reference_kind=reference_kind,
            reference_id=reference_id,
            posting_group=group,
            reason=reason,
            memo=memo,
            occurred_at=now,
            created_by_user_id=actor_user_id,
        )
        credit = LedgerEntry(
            account_id=credit_account_id,
            direction=CREDIT,
            amount_cents=amount_cents,
            reference_kind=reference_kind,
            reference_id=reference_id,
            posting_group=group,
            reason=reason,
            memo=memo,
            occurred_at=now,
            created_by_user_id=actor_user_id,
        )
        db.session.add(debit)
        db.session.add(credit)
        db.session.flush()
        return debit, credit

    def post_plan(
        self,
        plan: Sequence[Posting],
        *,
        reference_kind: str,
        reference_id: int,
        actor_user_id: int | None = None,
    ) -> list[LedgerEntry]:
        """Post each nonzero Posting of a plan in order."""
        entries: list[LedgerEntry] = []
        for p in plan:
            if p.amount_cents == 0:
                continue
            entries.extend(
                self.post_double_entry(
                    p.debit_account_id,
                    p.credit_account_id,
                    p.amount_cents,
                    p.memo,
                    reference_kind,
                    reference_id,
                    reason=p.reason,
                    actor_user_id=actor_user_id,
                )
            )
        return entries

    def reverse_reference(
        self,
        reference_kind: str,
        reference_id: int,
        *,
        memo: str,
        actor_user_id: int | None = None,
    ) -> list[LedgerEntry]:
        """
        Append a swapped copy of every entry of a document not yet reversed.

        Swapped copies keep the original posting pairs together: each original
        posting_group gets one new group.
        """
        entries = self.entries_for(reference_kind, reference_id)
        reversed_ids = {e.reverses_entry_id for e in entries if e.reverses_entry_id is not None}
        pending = [e for e in entries if e.reverses_entry_id is None and e.id not in reversed_ids]

        groups: dict[str, str] = {}
        now = utcnow()
        written = []
        for e in pending:
            group = groups.setdefault(e.posting_group, uuid.uuid4().hex)
            mirror = LedgerEntry(
                account_id=e.account_id,
                direction=CREDIT if e.direction == DEBIT else DEBIT,
                amount_cents=e.amount_cents,
                reference_kind=reference_kind,
                reference_id=reference_id,
                posting_group=group,
                reason=REASON_REVERSAL,
                memo=memo,
                reverses_entry_id=e.id,
                occurred_at=now,
                created_by_user_id=actor_user_id,
            )
            db.session.add(mirror)
            written.append(mirror)
        db.session.flush()
        return written

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def entries_for(self, reference_kind: str, reference_id: int) -> list[LedgerEntry]:
        return (
            db.session.query(LedgerEntry)
            .filter_by(reference_kind=reference_kind, reference_id=reference_id)
            .order_by(LedgerEntry.id.asc())
            .all()
        )

    def totals_for(self, reference_kind: str, reference_id: int) -> dict:
        debit, credit = (
            db.session.query(
                func.coalesce(func.sum(case((LedgerEntry.direction == DEBIT, LedgerEntry.amount_cents), else_=0)), 0),
                func.coalesce(func.sum(case((LedgerEntry.direction == CREDIT, LedgerEntry.amount_cents), else_=0)), 0),
            )
            .filter(LedgerEntry.reference_kind == reference_kind, LedgerEntry.reference_id == reference_id)
            .one()
        )
        return {"debit_cents": int(debit), "credit_cents": int(credit), "balanced": int(debit) == int(credit)}

    def balance(self, account_id: int) -> int:
        """Debits minus credits for an account."""
        signed = case((LedgerEntry.direction == DEBIT, LedgerEntry.amount_cents), else_=-LedgerEntry.amount_cents)
        total = (
            db.session.query(func.coalesce(func.sum(signed), 0))
            .filter(LedgerEntry.account_id == account_id)
            .scalar()
        )
        return int(total or 0)

    def net_by_account(self, references: Iterable[tuple[str, int]]) -> dict[int, int]:
        """Signed (debit positive) net per account across several documents."""
        totals: dict[int, int] = {}
        for reference_kind, reference_id in references:
            for e in self.entries_for(reference_kind, reference_id):
                sign = 1 if e.direction == DEBIT else -1
                totals[e.account_id] = totals.get(e.account_id, 0) + sign * e.amount_cents
        return totals

    def trial_balance(self) -> dict:
        rows = (
            db.session.query(
                Account.id,
                Account.code,
                Account.name,
                func.coalesce(func.sum(case((LedgerEntry.direction == DEBIT, LedgerEntry.amount_cents), else_=0)), 0),
                func.coalesce(func.sum(case((LedgerEntry.direction == CREDIT, LedgerEntry.amount_cents), else_=0)), 0),
            )
            .join(LedgerEntry, LedgerEntry.account_id == Account.id)
            .group_by(Account.id, Account.code, Account.name)
            .order_by(Account.code.asc())
            .all()
        )
        accounts = []
        total_debit = total_credit = 0
        for account_id, code, name, debit, credit in rows:
            debit = int(debit)
            credit = int(credit)
            total_debit += debit
            total_credit += credit
            accounts.append(
                {
                    "account_id": account_id,
                    "code": code,
                    "name": name,
                    "debit_cents": debit,
                    "credit_cents": credit,
                    "balance_cents": debit - credit,
                }
            )
        return {
            "accounts": accounts,
            "total_debit_cents": total_debit,
            "total_credit_cents": total_credit,
            "balanced": total_debit == total_credit,
        }

    def unbalanced_references(self) -> list[dict]:
        """Documents whose debit and credit totals differ (should always be empty)."""
        debit_sum = func.sum(case((LedgerEntry.direction == DEBIT, LedgerEntry.amount_cents), else_=0))
        credit_sum = func.sum(case((LedgerEntry.direction == CREDIT, LedgerEntry.amount_cents), else_=0))
        rows = (
            db.session.query(LedgerEntry.reference_kind, LedgerEntry.reference_id, debit_sum, credit_sum)
            .group_by(LedgerEntry.reference_kind, LedgerEntry.reference_id)
            .having(debit_sum != credit_sum)
            .all()
        )
        return [
            {"reference_kind": k, "reference_id": i, "debit_cents": int(d), "credit_cents": int(c)}
            for k, i, d, c in rows
        ]
