# Overview: Read-only stock routes; on-hand levels and movement history per document.

from flask import Blueprint, request, jsonify

from ..errors import EngineError, ValidationFailedError
from ..extensions import db
from ..models import StockLevel
from ..services.engine import get_engine
from .errors import error_response


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/items/<int:item_id>")
def item_stock_route(item_id: int):
    try:
        engine = get_engine()
        item = engine.items.get_item(item_id)
        levels = db.session.query(StockLevel).filter_by(item_id=item_id).order_by(StockLevel.warehouse_id).all()
        return jsonify(
            {
                "item_id": item.item_id,
                "code": item.code,
                "current_stock": item.current_stock,
                "levels": [level.to_dict() for level in levels],
            }
        ), 200
    except EngineError as e:
        return error_response(e)


@stock_bp.get("/movements")
def movements_route():
    """?reference_kind=sale&reference_id=12"""
    try:
        reference_kind = request.args.get("reference_kind")
        reference_id = request.args.get("reference_id", type=int)
        if not reference_kind or reference_id is None:
            raise ValidationFailedError("reference_kind and reference_id are required")
        movements = get_engine().stock.movements_for(reference_kind, reference_id)
        return jsonify({"items": [m.to_dict() for m in movements]}), 200
    except EngineError as e:
        return error_response(e)
