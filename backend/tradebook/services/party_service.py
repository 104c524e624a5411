# Overview: Customer/supplier master data and the party account view used for credit checks.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..errors import NotFoundError, ValidationFailedError
from ..extensions import db
from ..models import Customer, Supplier
from .account_service import create_account
from .accounting_ledger import AccountingLedger


PARTY_CUSTOMER = "customer"
PARTY_SUPPLIER = "supplier"

_PARTY_MODELS = {PARTY_CUSTOMER: Customer, PARTY_SUPPLIER: Supplier}


@dataclass(frozen=True)
class PartyAccount:
    party_kind: str
    party_id: int
    name: str
    is_active: bool
    credit_limit_cents: Optional[int]
    payment_terms_days: int
    account_id: int

    @property
    def has_credit_limit(self) -> bool:
        return bool(self.credit_limit_cents)


class PartyService:
    """Read-only party view; balances come from the ledger, never from the party row."""

    def __init__(self, ledger: AccountingLedger):
        self.ledger = ledger

    def get_account(self, party_kind: str, party_id: int) -> PartyAccount:
        model = _PARTY_MODELS.get(party_kind)
        if model is None:
            raise ValidationFailedError(f"Unknown party kind: {party_kind}")
        party = db.session.get(model, party_id)
        if party is None:
            raise NotFoundError(
                f"{party_kind.capitalize()} {party_id} not found",
                details={f"{party_kind}_id": party_id},
            )
        return PartyAccount(
            party_kind=party_kind,
            party_id=party.id,
            name=party.name,
            is_active=party.is_active,
            credit_limit_cents=party.credit_limit_cents,
            payment_terms_days=party.payment_terms_days or 0,
            account_id=party.account_id,
        )

    def balance(self, party_kind: str, party_id: int) -> int:
        """Debits minus credits on the party's ledger account."""
        return self.ledger.balance(self.get_account(party_kind, party_id).account_id)


def _create_party(
    party_kind: str,
    *,
    code: str,
    name: str,
    credit_limit_cents: int | None,
    payment_terms_days: int,
    phone: str | None,
):
    model = _PARTY_MODELS[party_kind]
    code = (code or "").strip()
    if not code:
        raise ValidationFailedError("code is required")
    if not name or not name.strip():
        raise ValidationFailedError("name is required")
    if credit_limit_cents is not None and credit_limit_cents < 0:
        raise ValidationFailedError("credit_limit_cents must be >= 0")
    if payment_terms_days < 0:
        raise ValidationFailedError("payment_terms_days must be >= 0")
    if db.session.query(model).filter_by(code=code).first():
        raise ValidationFailedError(f"{party_kind.capitalize()} code {code} already exists", details={"code": code})

    prefix = "AR" if party_kind == PARTY_CUSTOMER else "AP"
    account = create_account(
        code=f"{prefix}-{code}",
        name=name.strip(),
        account_type="receivable" if party_kind == PARTY_CUSTOMER else "payable",
        commit=False,
    )
    party = model(
        code=code,
        name=name.strip(),
        phone=phone,
        credit_limit_cents=credit_limit_cents,
        payment_terms_days=payment_terms_days,
        account_id=account.id,
        is_active=True,
    )
    db.session.add(party)
    db.session.commit()
    return party


def create_customer(
    *,
    code: str,
    name: str,
    credit_limit_cents: int | None = None,
    payment_terms_days: int = 0,
    phone: str | None = None,
) -> Customer:
    return _create_party(
        PARTY_CUSTOMER,
        code=code,
        name=name,
        credit_limit_cents=credit_limit_cents,
        payment_terms_days=payment_terms_days,
        phone=phone,
    )


def create_supplier(
    *,
    code: str,
    name: str,
    credit_limit_cents: int | None = None,
    payment_terms_days: int = 0,
    phone: str | None = None,
) -> Supplier:
    return _create_party(
        PARTY_SUPPLIER,
        code=code,
        name=name,
        credit_limit_cents=credit_limit_cents,
        payment_terms_days=payment_terms_days,
        phone=phone,
    )


def set_party_active(party_kind: str, party_id: int, is_active: bool):
    model = _PARTY_MODELS[party_kind]
    party = db.session.get(model, party_id)
    if party is None:
        raise NotFoundError(f"{party_kind.capitalize()} {party_id} not found")
    party.is_active = is_active
    db.session.commit()
    return party
