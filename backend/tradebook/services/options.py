# Overview: Closed option structs for every engine operation, with strict payload parsing.

"""
Operation options

Each engine operation takes one frozen dataclass that enumerates every
recognized option. from_payload() builds them from JSON-like dicts and
rejects unknown keys instead of merging them into queries.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any, Optional

from ..errors import ValidationFailedError
from ..money import percent_to_bps
from tradebook.time_utils import parse_iso_date, parse_iso_datetime
from .calculator import Discount, NO_DISCOUNT


def _reject_unknown(payload: dict, allowed: set[str], what: str) -> None:
    if payload is None:
        raise ValidationFailedError(f"Invalid {what} payload")
    if not isinstance(payload, dict):
        raise ValidationFailedError(f"Invalid {what} payload")
    for key in payload:
        if key not in allowed:
            raise ValidationFailedError(f"Field not allowed: {key}", details={"field": key})


def _int(payload: dict, key: str, *, required: bool = False) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        if required:
            raise ValidationFailedError(f"{key} is required", details={"field": key})
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailedError(f"{key} must be an integer", details={"field": key})
    return value


def _str(payload: dict, key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailedError(f"{key} must be a string", details={"field": key})
    value = value.strip()
    return value or None


def _bool(payload: dict, key: str, default: bool = False) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValidationFailedError(f"{key} must be a boolean", details={"field": key})
    return value


def _date(payload: dict, key: str) -> Optional[date]:
    try:
        return parse_iso_date(_str(payload, key))
    except ValueError:
        raise ValidationFailedError(f"{key} must be an ISO-8601 date", details={"field": key})


def _discount(payload: dict, tier: str) -> Discount:
    pct = payload.get(f"{tier}_percent")
    amount = _int(payload, f"{tier}_amount_cents")
    bps = None
    if pct is not None:
        try:
            bps = percent_to_bps(pct)
        except ValueError as exc:
            raise ValidationFailedError(f"{tier}_percent: {exc}", details={"field": f"{tier}_percent"})
    if bps is None and amount is None:
        return NO_DISCOUNT
    return Discount(percent_bps=bps, amount_cents=amount)


@dataclass(frozen=True)
class LineOptions:
    item_id: int
    quantity: int
    unit_price_cents: Optional[int] = None
    discount1: Discount = NO_DISCOUNT
    discount2: Discount = NO_DISCOUNT
    # None -> the item's default tax codes; () -> untaxed
    tax_codes: Optional[tuple[str, ...]] = None
    tax_inclusive: bool = False
    warehouse_id: Optional[int] = None
    batch_number: Optional[str] = None

    ALLOWED = {
        "item_id", "quantity", "unit_price_cents",
        "discount1_percent", "discount1_amount_cents",
        "discount2_percent", "discount2_amount_cents",
        "tax_codes", "tax_inclusive", "warehouse_id", "batch_number",
    }

    @classmethod
    def from_payload(cls, payload: dict) -> "LineOptions":
        _reject_unknown(payload, cls.ALLOWED, "line")
        tax_codes = payload.get("tax_codes")
        if tax_codes is not None:
            if not isinstance(tax_codes, list) or not all(isinstance(c, str) for c in tax_codes):
                raise ValidationFailedError("tax_codes must be a list of strings", details={"field": "tax_codes"})
            tax_codes = tuple(c.strip().upper() for c in tax_codes)
        return cls(
            item_id=_int(payload, "item_id", required=True),
            quantity=_int(payload, "quantity", required=True),
            unit_price_cents=_int(payload, "unit_price_cents"),
            discount1=_discount(payload, "discount1"),
            discount2=_discount(payload, "discount2"),
            tax_codes=tax_codes,
            tax_inclusive=_bool(payload, "tax_inclusive"),
            warehouse_id=_int(payload, "warehouse_id"),
            batch_number=_str(payload, "batch_number"),
        )


def _lines(payload: dict) -> tuple[LineOptions, ...]:
    raw = payload.get("lines")
    if not isinstance(raw, list):
        raise ValidationFailedError("lines must be a list", details={"field": "lines"})
    return tuple(LineOptions.from_payload(line) for line in raw)


@dataclass(frozen=True)
class CreateInvoiceOptions:
    kind: str
    party_id: int
    warehouse_id: int
    lines: tuple[LineOptions, ...]
    actor_user_id: int
    invoice_date: Optional[date] = None
    document_number: Optional[str] = None
    adjustment_account_id: Optional[int] = None
    apply_income_tax: bool = False
    notes: Optional[str] = None

    ALLOWED = {
        "kind", "party_id", "warehouse_id", "lines", "invoice_date",
        "document_number", "adjustment_account_id", "apply_income_tax", "notes",
    }

    @classmethod
    def from_payload(cls, payload: dict, *, actor_user_id: int) -> "CreateInvoiceOptions":
        _reject_unknown(payload, cls.ALLOWED, "invoice")
        kind = _str(payload, "kind")
        if kind is None:
            raise ValidationFailedError("kind is required", details={"field": "kind"})
        return cls(
            kind=kind,
            party_id=_int(payload, "party_id", required=True),
            warehouse_id=_int(payload, "warehouse_id", required=True),
            lines=_lines(payload),
            actor_user_id=actor_user_id,
            invoice_date=_date(payload, "invoice_date"),
            document_number=_str(payload, "document_number"),
            adjustment_account_id=_int(payload, "adjustment_account_id"),
            apply_income_tax=_bool(payload, "apply_income_tax"),
            notes=_str(payload, "notes"),
        )


@dataclass(frozen=True)
class UpdateLinesOptions:
    lines: tuple[LineOptions, ...]
    actor_user_id: int

    @classmethod
    def from_payload(cls, payload: dict, *, actor_user_id: int) -> "UpdateLinesOptions":
        _reject_unknown(payload, {"lines"}, "lines")
        return cls(lines=_lines(payload), actor_user_id=actor_user_id)


@dataclass(frozen=True)
class PaymentOptions:
    actor_user_id: int
    amount_cents: Optional[int] = None
    paid_at: Optional[datetime] = None

    ALLOWED = {"amount_cents", "paid_at"}

    @classmethod
    def from_payload(cls, payload: dict | None, *, actor_user_id: int) -> "PaymentOptions":
        payload = payload or {}
        _reject_unknown(payload, cls.ALLOWED, "payment")
        try:
            paid_at = parse_iso_datetime(_str(payload, "paid_at"))
        except ValueError:
            raise ValidationFailedError("paid_at must be an ISO-8601 datetime", details={"field": "paid_at"})
        return cls(
            actor_user_id=actor_user_id,
            amount_cents=_int(payload, "amount_cents"),
            paid_at=paid_at,
        )


@dataclass(frozen=True)
class InvoiceFilter:
    kind: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    customer_id: Optional[int] = None
    supplier_id: Optional[int] = None
    original_invoice_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: int = 50
    offset: int = 0

    @classmethod
    def from_args(cls, args) -> "InvoiceFilter":
        """Build from request.args-like mapping of strings; unknown keys rejected."""
        allowed = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key in args:
            if key not in allowed:
                raise ValidationFailedError(f"Unknown filter: {key}", details={"field": key})
        for key in ("kind", "status", "payment_status"):
            if args.get(key):
                values[key] = args.get(key)
        for key in ("customer_id", "supplier_id", "original_invoice_id", "limit", "offset"):
            raw = args.get(key)
            if raw is None or raw == "":
                continue
            try:
                values[key] = int(raw)
            except (TypeError, ValueError):
                raise ValidationFailedError(f"{key} must be an integer", details={"field": key})
        for key in ("date_from", "date_to"):
            try:
                parsed = parse_iso_date(args.get(key))
            except ValueError:
                raise ValidationFailedError(f"{key} must be an ISO-8601 date", details={"field": key})
            if parsed is not None:
                values[key] = parsed
        values["limit"] = max(1, min(values.get("limit", 50), 500))
        values["offset"] = max(0, values.get("offset", 0))
        return cls(**values)


@dataclass(frozen=True)
class ReturnLineOptions:
    quantity: int
    original_line_id: Optional[int] = None
    item_id: Optional[int] = None

    ALLOWED = {"quantity", "original_line_id", "item_id"}

    @classmethod
    def from_payload(cls, payload: dict) -> "ReturnLineOptions":
        _reject_unknown(payload, cls.ALLOWED, "return line")
        line = cls(
            quantity=_int(payload, "quantity", required=True),
            original_line_id=_int(payload, "original_line_id"),
            item_id=_int(payload, "item_id"),
        )
        if line.original_line_id is None and line.item_id is None:
            raise ValidationFailedError("original_line_id or item_id is required")
        return line


@dataclass(frozen=True)
class ReturnOptions:
    lines: tuple[ReturnLineOptions, ...]
    actor_user_id: int
    reason: Optional[str] = None
    return_date: Optional[date] = None
    document_number: Optional[str] = None

    ALLOWED = {"lines", "reason", "return_date", "document_number"}

    @classmethod
    def from_payload(cls, payload: dict, *, actor_user_id: int) -> "ReturnOptions":
        _reject_unknown(payload, cls.ALLOWED, "return")
        raw = payload.get("lines")
        if not isinstance(raw, list):
            raise ValidationFailedError("lines must be a list", details={"field": "lines"})
        return cls(
            lines=tuple(ReturnLineOptions.from_payload(line) for line in raw),
            actor_user_id=actor_user_id,
            reason=_str(payload, "reason"),
            return_date=_date(payload, "return_date"),
            document_number=_str(payload, "document_number"),
        )
