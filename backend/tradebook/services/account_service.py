# Overview: Chart-of-accounts setup and resolution of the system posting accounts.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import ValidationFailedError
from ..extensions import db
from ..models import Account
from ..models.accounts import ACCOUNT_TYPES


# config key -> (default name, account type)
SYSTEM_ACCOUNTS = {
    "SALES_ACCOUNT_CODE": ("Sales Revenue", "revenue"),
    "PURCHASES_ACCOUNT_CODE": ("Purchases", "expense"),
    "OUTPUT_TAX_ACCOUNT_CODE": ("Output Tax Payable", "liability"),
    "INPUT_TAX_ACCOUNT_CODE": ("Input Tax Receivable", "asset"),
    "INCOME_TAX_ACCOUNT_CODE": ("Income Tax Withheld", "liability"),
    "TRADE_OFFER_ACCOUNT_CODE": ("Trade Offers & Discounts", "expense"),
}


@dataclass(frozen=True)
class PostingAccounts:
    """System account codes the posting rules need."""
    sales: str
    purchases: str
    output_tax: str
    input_tax: str
    income_tax: str
    trade_offer: str

    @classmethod
    def from_config(cls, config) -> "PostingAccounts":
        return cls(
            sales=config["SALES_ACCOUNT_CODE"],
            purchases=config["PURCHASES_ACCOUNT_CODE"],
            output_tax=config["OUTPUT_TAX_ACCOUNT_CODE"],
            input_tax=config["INPUT_TAX_ACCOUNT_CODE"],
            income_tax=config["INCOME_TAX_ACCOUNT_CODE"],
            trade_offer=config["TRADE_OFFER_ACCOUNT_CODE"],
        )


def create_account(*, code: str, name: str, account_type: str, commit: bool = True) -> Account:
    code = (code or "").strip()
    if not code:
        raise ValidationFailedError("account code is required")
    if account_type not in ACCOUNT_TYPES:
        raise ValidationFailedError(f"account_type must be one of {', '.join(ACCOUNT_TYPES)}")
    if db.session.query(Account).filter_by(code=code).first():
        raise ValidationFailedError(f"Account code {code} already exists", details={"code": code})
    account = Account(code=code, name=name, account_type=account_type, is_active=True)
    db.session.add(account)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return account


def ensure_system_accounts(config=None) -> list[Account]:
    """Idempotently create every configured system account; returns those created."""
    config = config or current_app.config
    created = []
    for key, (name, account_type) in SYSTEM_ACCOUNTS.items():
        code = config[key]
        if db.session.query(Account).filter_by(code=code).first():
            continue
        account = Account(code=code, name=name, account_type=account_type, is_active=True)
        db.session.add(account)
        created.append(account)
    db.session.commit()
    return created
