# backend/tradebook/routes/invoices.py
"""
Invoice API Routes

- POST   /api/invoices                          create a draft sale/purchase
- GET    /api/invoices                          list (closed filter set)
- GET    /api/invoices/:id                      one invoice with lines
- PUT    /api/invoices/:id/lines                replace draft lines
- DELETE /api/invoices/:id                      delete a draft
- POST   /api/invoices/:id/confirm              draft -> confirmed
- POST   /api/invoices/:id/cancel               -> cancelled (reverses effects)
- POST   /api/invoices/:id/mark-paid
- POST   /api/invoices/:id/mark-partially-paid
- GET    /api/invoices/:id/postings             stock movements + ledger entries
- GET    /api/invoices/:id/returnable           remaining quantity per line
- GET    /api/invoices/:id/returns
- POST   /api/invoices/:id/returns              create a return document

The acting user id comes from the X-Actor-Id header set by the calling
layer, never from the request body.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import EngineError, ValidationFailedError
from ..services.engine import get_engine
from ..services.options import (
    CreateInvoiceOptions,
    InvoiceFilter,
    PaymentOptions,
    ReturnOptions,
    UpdateLinesOptions,
)
from .errors import actor_id, error_response, internal_error_response, json_body


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("")
def create_invoice_route():
    """
    Create a draft invoice.

    Request body:
    {
        "kind": "sale",
        "party_id": 1,
        "warehouse_id": 1,
        "lines": [{"item_id": 3, "quantity": 30, "unit_price_cents": 1000, "tax_codes": ["GST18"]}],
        "adjustment_account_id": 7,     (required when any discount applies)
        "apply_income_tax": false,
        "invoice_date": "2026-10-17",
        "document_number": "SI2026000001"  (optional, generated when omitted)
    }
    """
    try:
        options = CreateInvoiceOptions.from_payload(json_body(), actor_user_id=actor_id())
        invoice = get_engine().invoices.create_draft(options)
        return jsonify({"invoice": invoice.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return internal_error_response()


@invoices_bp.get("")
def list_invoices_route():
    try:
        filters = InvoiceFilter.from_args(request.args)
        invoices = get_engine().invoices.list_invoices(filters)
        return jsonify(
            {
                "items": [inv.to_dict(include_lines=False) for inv in invoices],
                "limit": filters.limit,
                "offset": filters.offset,
            }
        ), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return internal_error_response()


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        invoice = get_engine().invoices.get(invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except EngineError as e:
        return error_response(e)


@invoices_bp.put("/<int:invoice_id>/lines")
def update_lines_route(invoice_id: int):
    try:
        options = UpdateLinesOptions.from_payload(json_body(), actor_user_id=actor_id())
        invoice = get_engine().invoices.update_lines(
            invoice_id, options.lines, actor_user_id=options.actor_user_id
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice lines")
        return internal_error_response()


@invoices_bp.delete("/<int:invoice_id>")
def delete_draft_route(invoice_id: int):
    try:
        actor_id()
        get_engine().invoices.delete_draft(invoice_id)
        return jsonify({"deleted": True}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return internal_error_response()


@invoices_bp.post("/<int:invoice_id>/confirm")
def confirm_invoice_route(invoice_id: int):
    """
    Confirm a draft: moves stock, posts ledger entries, stamps confirmed_by/at.

    Error responses:
        404 NotFound, 409 InvalidState / InsufficientStock / CreditLimitExceeded,
        400 ValidationFailed
    """
    try:
        invoice = get_engine().invoices.confirm(invoice_id, actor_user_id=actor_id())
        return jsonify({"invoice": invoice.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm invoice %s", invoice_id)
        return internal_error_response()


@invoices_bp.post("/<int:invoice_id>/cancel")
def cancel_invoice_route(invoice_id: int):
    """Request body: {"reason": "Customer changed order"}"""
    try:
        data = json_body()
        unknown = set(data) - {"reason"}
        if unknown:
            raise ValidationFailedError(f"Field not allowed: {sorted(unknown)[0]}")
        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationFailedError("reason must be a string")
        invoice = get_engine().invoices.cancel(invoice_id, actor_user_id=actor_id(), reason=reason)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel invoice %s", invoice_id)
        return internal_error_response()


@invoices_bp.post("/<int:invoice_id>/mark-paid")
def mark_paid_route(invoice_id: int):
    try:
        options = PaymentOptions.from_payload(json_body(), actor_user_id=actor_id())
        invoice = get_engine().invoices.mark_paid(invoice_id, options)
        return jsonify({"invoice": invoice.to_dict(include_lines=False)}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark invoice %s paid", invoice_id)
        return internal_error_response()


@invoices_bp.post("/<int:invoice_id>/mark-partially-paid")
def mark_partially_paid_route(invoice_id: int):
    """Request body: {"amount_cents": 5000}"""
    try:
        options = PaymentOptions.from_payload(json_body(), actor_user_id=actor_id())
        invoice = get_engine().invoices.mark_partially_paid(invoice_id, options)
        return jsonify({"invoice": invoice.to_dict(include_lines=False)}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record partial payment on invoice %s", invoice_id)
        return internal_error_response()


@invoices_bp.get("/<int:invoice_id>/postings")
def invoice_postings_route(invoice_id: int):
    try:
        return jsonify(get_engine().invoices.postings(invoice_id)), 200
    except EngineError as e:
        return error_response(e)


# =============================================================================
# RETURNS
# =============================================================================

@invoices_bp.get("/<int:invoice_id>/returnable")
def returnable_route(invoice_id: int):
    try:
        lines = get_engine().returns.get_returnable(invoice_id)
        return jsonify({"invoice_id": invoice_id, "lines": [r.to_dict() for r in lines]}), 200
    except EngineError as e:
        return error_response(e)


@invoices_bp.get("/<int:invoice_id>/returns")
def list_returns_route(invoice_id: int):
    try:
        include_cancelled = request.args.get("include_cancelled", "false").lower() == "true"
        engine = get_engine()
        engine.invoices.get(invoice_id)
        returns = engine.returns.returns_for(invoice_id, include_cancelled=include_cancelled)
        return jsonify({"items": [r.to_dict() for r in returns]}), 200
    except EngineError as e:
        return error_response(e)


@invoices_bp.post("/<int:invoice_id>/returns")
def create_return_route(invoice_id: int):
    """
    Create a return document against a confirmed invoice.

    Request body:
    {
        "lines": [{"original_line_id": 456, "quantity": 2}, {"item_id": 3, "quantity": 1}],
        "reason": "Damaged in transit"
    }

    Returns:
        201: Return created (already confirmed; stock and ledger reversed)
        409: ReturnQuantityExceeded with per-item requested/available
    """
    try:
        options = ReturnOptions.from_payload(json_body(), actor_user_id=actor_id())
        doc = get_engine().returns.create_return(invoice_id, options)
        return jsonify({"return": doc.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return for invoice %s", invoice_id)
        return internal_error_response()
