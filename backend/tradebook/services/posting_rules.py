# Overview: Which accounts a sale or purchase debits and credits, shared by confirmation and returns.

"""
Posting rules

A confirmed sale posts, all under the invoice's reference:
    Dr customer        / Cr sales revenue     subtotal
    Dr customer        / Cr output tax        total tax
    Dr trade offer acc / Cr customer          total discount
    Dr income tax      / Cr customer          income tax (when requested)

A confirmed purchase mirrors it on the payable side:
    Dr purchases       / Cr supplier          subtotal
    Dr input tax       / Cr supplier          total tax
    Dr supplier        / Cr trade offer acc   total discount
    Dr supplier        / Cr income tax        income tax (when requested)

Return documents post the same plan for their (absolute) amounts with debit
and credit swapped.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ValidationFailedError
from ..models.invoices import KIND_PURCHASE, KIND_PURCHASE_RETURN, KIND_SALE, KIND_SALE_RETURN
from ..money import percent_of
from .account_service import PostingAccounts
from .accounting_ledger import AccountingLedger, Posting
from .stock_ledger import DECREASE, INCREASE


SIDE_SALE = "sale"
SIDE_PURCHASE = "purchase"

# Which side of the business a document kind belongs to
SIDE_BY_KIND = {
    KIND_SALE: SIDE_SALE,
    KIND_SALE_RETURN: SIDE_SALE,
    KIND_PURCHASE: SIDE_PURCHASE,
    KIND_PURCHASE_RETURN: SIDE_PURCHASE,
}

STOCK_DIRECTION_BY_KIND = {
    KIND_SALE: DECREASE,
    KIND_PURCHASE: INCREASE,
    KIND_SALE_RETURN: INCREASE,
    KIND_PURCHASE_RETURN: DECREASE,
}


@dataclass(frozen=True)
class PostingAmounts:
    """Non-negative amounts to post for one document."""
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    income_tax_cents: int = 0

    @classmethod
    def from_invoice(cls, invoice) -> "PostingAmounts":
        sign = -1 if invoice.is_return else 1
        return cls(
            subtotal_cents=sign * invoice.subtotal_cents,
            tax_cents=sign * invoice.total_tax_cents,
            discount_cents=sign * invoice.total_discount_cents,
            income_tax_cents=sign * invoice.income_tax_cents,
        )


def income_tax_for(grand_total_cents: int, rate_bps: int) -> int:
    return percent_of(abs(grand_total_cents), rate_bps)


def _system_account_id(ledger: AccountingLedger, code: str, purpose: str) -> int:
    account = ledger.account_by_code(code)
    if account is None or not account.is_active:
        raise ValidationFailedError(
            f"{purpose} account {code} is not configured",
            details={"account_code": code, "purpose": purpose},
        )
    return account.id


def build_plan(
    *,
    ledger: AccountingLedger,
    accounts: PostingAccounts,
    side: str,
    party_account_id: int,
    amounts: PostingAmounts,
    adjustment_account_id: int | None,
    document_number: str,
) -> list[Posting]:
    """
    Resolve accounts and return the ordered posting plan.

    Raises ValidationFailedError before anything is written when a needed
    account is missing; in particular a nonzero discount needs an
    adjustment account on the document.
    """
    if amounts.discount_cents and adjustment_account_id is None:
        raise ValidationFailedError(
            "An adjustment account is required when a discount or trade offer is applied",
            details={"discount_cents": amounts.discount_cents},
        )

    ledger.require_active_accounts([party_account_id])
    if amounts.discount_cents:
        ledger.require_active_accounts([adjustment_account_id])

    plan: list[Posting] = []
    if side == SIDE_SALE:
        if amounts.subtotal_cents:
            revenue = _system_account_id(ledger, accounts.sales, "Sales")
            plan.append(Posting(party_account_id, revenue, amounts.subtotal_cents, "sale", f"Sale {document_number}"))
        if amounts.tax_cents:
            output_tax = _system_account_id(ledger, accounts.output_tax, "Output tax")
            plan.append(Posting(party_account_id, output_tax, amounts.tax_cents, "tax", f"Tax on {document_number}"))
        if amounts.discount_cents:
            plan.append(
                Posting(adjustment_account_id, party_account_id, amounts.discount_cents, "trade_offer", f"Trade offer on {document_number}")
            )
        if amounts.income_tax_cents:
            income_tax = _system_account_id(ledger, accounts.income_tax, "Income tax")
            plan.append(
                Posting(income_tax, party_account_id, amounts.income_tax_cents, "income_tax", f"Income tax on {document_number}")
            )
    elif side == SIDE_PURCHASE:
        if amounts.subtotal_cents:
            purchases = _system_account_id(ledger, accounts.purchases, "Purchases")
            plan.append(Posting(purchases, party_account_id, amounts.subtotal_cents, "purchase", f"Purchase {document_number}"))
        if amounts.tax_cents:
            input_tax = _system_account_id(ledger, accounts.input_tax, "Input tax")
            plan.append(Posting(input_tax, party_account_id, amounts.tax_cents, "tax", f"Tax on {document_number}"))
        if amounts.discount_cents:
            plan.append(
                Posting(party_account_id, adjustment_account_id, amounts.discount_cents, "trade_offer", f"Trade offer on {document_number}")
            )
        if amounts.income_tax_cents:
            income_tax = _system_account_id(ledger, accounts.income_tax, "Income tax")
            plan.append(
                Posting(party_account_id, income_tax, amounts.income_tax_cents, "income_tax", f"Income tax on {document_number}")
            )
    else:
        raise ValidationFailedError(f"Unknown posting side: {side}")

    return plan


def swap_plan(plan: list[Posting]) -> list[Posting]:
    return [p.swapped() for p in plan]
