# Overview: Tax-code configuration writes and the read-through tax rule cache.

"""
Tax configuration service.

Tax codes are read on every line computation, so reads go through a
TaxCodeCache owned by the Flask app (app.extensions["tax_cache"]). The cache
holds immutable TaxRule snapshots, never ORM rows, so cached values are safe
to share across sessions and threads.

Every write in this module invalidates the affected code synchronously after
commit; there is no time-based expiry.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from flask import current_app

from ..errors import NotFoundError, ValidationFailedError
from ..extensions import db
from ..models import TaxCode
from ..models.tax import TAX_APPLIES_TO, TAX_TYPES
from ..money import BPS_SCALE
from .calculator import TaxRule


def load_tax_rule(code: str) -> Optional[TaxRule]:
    """Read one active tax code from the database as a TaxRule."""
    row = db.session.query(TaxCode).filter_by(code=code, is_active=True).first()
    if row is None:
        return None
    return TaxRule(
        code=row.code,
        rate_bps=row.rate_bps,
        is_compound=row.is_compound,
        applies_to=row.applies_to,
        tax_type=row.tax_type,
    )


class TaxCodeCache:
    """
    Read-through cache: get(code) loads on miss, invalidate(code) drops one
    entry, invalidate() drops everything. Misses are not cached.

    Each invalidation bumps a generation counter (per code, plus a global one
    for invalidate()). A load only stores its result if no invalidation of
    that code happened while it ran, so a write racing a load can never
    leave the old rule cached.
    """

    def __init__(self, loader: Callable[[str], Optional[TaxRule]] = load_tax_rule):
        self._loader = loader
        self._entries: dict[str, TaxRule] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    def _generation(self, code: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(code, 0)

    def get(self, code: str) -> Optional[TaxRule]:
        with self._lock:
            cached = self._entries.get(code)
            started = self._generation(code)
        if cached is not None:
            return cached
        rule = self._loader(code)
        if rule is not None:
            with self._lock:
                if self._generation(code) == started:
                    self._entries[code] = rule
        return rule

    def invalidate(self, code: str | None = None) -> None:
        with self._lock:
            if code is None:
                self._entries.clear()
                self._epoch += 1
            else:
                self._entries.pop(code, None)
                self._generations[code] = self._generations.get(code, 0) + 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def init_tax_cache(app) -> TaxCodeCache:
    cache = TaxCodeCache()
    app.extensions["tax_cache"] = cache
    return cache


def get_tax_cache() -> TaxCodeCache:
    return current_app.extensions["tax_cache"]


def _validate_tax_fields(*, code: str, name: str, rate_bps: int, tax_type: str, applies_to: str) -> None:
    if not code or not code.strip():
        raise ValidationFailedError("code is required")
    if len(code) > 32:
        raise ValidationFailedError("code exceeds max length 32")
    if not name or not name.strip():
        raise ValidationFailedError("name is required")
    if not isinstance(rate_bps, int) or isinstance(rate_bps, bool) or not 0 <= rate_bps <= BPS_SCALE:
        raise ValidationFailedError("rate must be between 0 and 100 percent", details={"rate_bps": rate_bps})
    if tax_type not in TAX_TYPES:
        raise ValidationFailedError(f"tax_type must be one of {', '.join(TAX_TYPES)}")
    if applies_to not in TAX_APPLIES_TO:
        raise ValidationFailedError(f"applies_to must be one of {', '.join(TAX_APPLIES_TO)}")


def save_tax_code(
    *,
    code: str,
    name: str,
    rate_bps: int,
    tax_type: str = "GST",
    is_compound: bool = False,
    applies_to: str = "both",
    is_active: bool = True,
    cache: TaxCodeCache | None = None,
) -> TaxCode:
    """Create or update a tax code, then invalidate its cache entry."""
    code = (code or "").strip().upper()
    _validate_tax_fields(code=code, name=name, rate_bps=rate_bps, tax_type=tax_type, applies_to=applies_to)

    row = db.session.query(TaxCode).filter_by(code=code).first()
    if row is None:
        row = TaxCode(code=code)
        db.session.add(row)
    row.name = name.strip()
    row.rate_bps = rate_bps
    row.tax_type = tax_type
    row.is_compound = bool(is_compound)
    row.applies_to = applies_to
    row.is_active = bool(is_active)
    db.session.commit()

    (cache or get_tax_cache()).invalidate(code)
    current_app.logger.info("Tax code %s saved (rate_bps=%s, active=%s)", code, rate_bps, row.is_active)
    return row


def deactivate_tax_code(code: str, *, cache: TaxCodeCache | None = None) -> TaxCode:
    row = db.session.query(TaxCode).filter_by(code=code).first()
    if row is None:
        raise NotFoundError(f"Tax code {code} not found", details={"tax_code": code})
    row.is_active = False
    db.session.commit()
    (cache or get_tax_cache()).invalidate(code)
    current_app.logger.info("Tax code %s deactivated", code)
    return row


def list_tax_codes(*, include_inactive: bool = False) -> list[TaxCode]:
    q = db.session.query(TaxCode)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(TaxCode.code.asc()).all()
