# Overview: Read-only ledger routes; balances, trial balance and posting checks.

from flask import Blueprint, request, jsonify

from ..errors import EngineError, ValidationFailedError
from ..services.engine import get_engine
from ..services.party_service import PARTY_CUSTOMER, PARTY_SUPPLIER
from .errors import error_response


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("/trial-balance")
def trial_balance_route():
    return jsonify(get_engine().ledger.trial_balance()), 200


@ledger_bp.get("/accounts/<int:account_id>/balance")
def account_balance_route(account_id: int):
    try:
        ledger = get_engine().ledger
        account = ledger.get_account(account_id)
        return jsonify({"account": account.to_dict(), "balance_cents": ledger.balance(account_id)}), 200
    except EngineError as e:
        return error_response(e)


@ledger_bp.get("/parties/<party_kind>/<int:party_id>/balance")
def party_balance_route(party_kind: str, party_id: int):
    """Running balance (debits - credits) derived from the party's ledger account."""
    try:
        if party_kind not in (PARTY_CUSTOMER, PARTY_SUPPLIER):
            raise ValidationFailedError("party kind must be customer or supplier")
        parties = get_engine().parties
        account = parties.get_account(party_kind, party_id)
        return jsonify(
            {
                "party_kind": party_kind,
                "party_id": party_id,
                "account_id": account.account_id,
                "credit_limit_cents": account.credit_limit_cents,
                "balance_cents": parties.balance(party_kind, party_id),
            }
        ), 200
    except EngineError as e:
        return error_response(e)


@ledger_bp.get("/entries")
def reference_entries_route():
    """?reference_kind=sale&reference_id=12"""
    try:
        reference_kind = request.args.get("reference_kind")
        reference_id = request.args.get("reference_id", type=int)
        if not reference_kind or reference_id is None:
            raise ValidationFailedError("reference_kind and reference_id are required")
        ledger = get_engine().ledger
        return jsonify(
            {
                "items": [e.to_dict() for e in ledger.entries_for(reference_kind, reference_id)],
                "totals": ledger.totals_for(reference_kind, reference_id),
            }
        ), 200
    except EngineError as e:
        return error_response(e)
