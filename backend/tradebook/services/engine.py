# Overview: Wires the invoice engine components together with explicit dependencies.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .account_service import PostingAccounts
from .accounting_ledger import AccountingLedger
from .invoice_service import InvoiceLifecycle
from .item_service import ItemService
from .numbering_service import NumberingService
from .party_service import PartyService
from .return_service import ReturnEngine
from .stock_ledger import StockLedger
from .tax_service import TaxCodeCache


@dataclass
class Engine:
    stock: StockLedger
    ledger: AccountingLedger
    parties: PartyService
    items: ItemService
    numbering: NumberingService
    tax_cache: TaxCodeCache
    invoices: InvoiceLifecycle
    returns: ReturnEngine


def build_engine(config, tax_cache: TaxCodeCache) -> Engine:
    stock = StockLedger()
    ledger = AccountingLedger()
    parties = PartyService(ledger)
    items = ItemService(stock)
    numbering = NumberingService()
    accounts = PostingAccounts.from_config(config)
    income_tax_rate_bps = int(config["INCOME_TAX_RATE_BPS"])

    invoices = InvoiceLifecycle(
        stock=stock,
        ledger=ledger,
        parties=parties,
        items=items,
        tax_rules=tax_cache,
        numbering=numbering,
        accounts=accounts,
        income_tax_rate_bps=income_tax_rate_bps,
    )
    returns = ReturnEngine(
        stock=stock,
        ledger=ledger,
        parties=parties,
        numbering=numbering,
        accounts=accounts,
        income_tax_rate_bps=income_tax_rate_bps,
    )
    return Engine(
        stock=stock,
        ledger=ledger,
        parties=parties,
        items=items,
        numbering=numbering,
        tax_cache=tax_cache,
        invoices=invoices,
        returns=returns,
    )


def init_engine(app) -> Engine:
    engine = build_engine(app.config, app.extensions["tax_cache"])
    app.extensions["invoice_engine"] = engine
    return engine


def get_engine() -> Engine:
    return current_app.extensions["invoice_engine"]
