"""Catalog unit-price lookup. A missing price is tolerated and reads as 0."""

import logging
import re
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..models import MaterialCatalog

logger = logging.getLogger(__name__)

# Average Indian market rates, used when the catalog row carries no price
MATERIAL_UNIT_PRICES = {
    "bricks": Decimal("10"),           # per piece
    "cement": Decimal("400"),          # per bag (50kg)
    "concrete mix": Decimal("6000"),   # per m3
    "gravel": Decimal("2750"),         # per tonne
    "sand": Decimal("3750"),           # per tonne
    "steel bars": Decimal("62"),       # per kg
    "steel bars (tmt)": Decimal("62"),
}


def _normalize(name: str) -> str:
    name = re.sub(r"[^a-z0-9\s]", "", name.lower())
    return re.sub(r"\s+", " ", name).strip()


def _singular(name: str) -> str:
    return " ".join(w[:-1] if len(w) > 3 and w.endswith("s") else w for w in name.split())


def market_price_for_name(material_name: str) -> Optional[Decimal]:
    """Case-insensitive match against MATERIAL_UNIT_PRICES, then partial match"""
    raw = (material_name or "").strip().lower()
    if not raw:
        return None
    if raw in MATERIAL_UNIT_PRICES:
        return MATERIAL_UNIT_PRICES[raw]

    norm = _normalize(raw)
    for key, price in MATERIAL_UNIT_PRICES.items():
        kn = _normalize(key)
        if kn == norm:
            return price
    for key, price in MATERIAL_UNIT_PRICES.items():
        kn = _singular(_normalize(key))
        nn = _singular(norm)
        if kn and nn and (kn in nn or nn in kn):
            return price
    return None


def get_unit_price(db: Session, material_id: str, material_name: Optional[str] = None) -> Optional[Decimal]:
    """
    Resolve the unit price for a material.

    Catalog price by code first; falls back to the market table by name.
    Returns None when nothing is known.
    """
    entry = db.query(MaterialCatalog).filter(MaterialCatalog.code == material_id).first()
    if entry is not None and entry.approx_price_inr is not None:
        return Decimal(str(entry.approx_price_inr))
    name = material_name or (entry.name if entry is not None else None)
    return market_price_for_name(name) if name else None


def resolve_unit_price(
    db: Session,
    material_id: str,
    material_name: Optional[str] = None,
    lookup: Callable = get_unit_price
) -> Decimal:
    """``lookup`` with failures and unknown prices collapsed to 0"""
    try:
        price = lookup(db, material_id, material_name)
    except Exception as e:
        logger.warning("Catalog price lookup failed for %s: %s", material_id, e)
        return Decimal("0")
    if price is None:
        logger.warning("No catalog price for material %s (%s); using 0", material_id, material_name)
        return Decimal("0")
    return price


def list_catalog(db: Session, include_inactive: bool = False):
    query = db.query(MaterialCatalog)
    if not include_inactive:
        query = query.filter(MaterialCatalog.is_active == True)
    return query.order_by(MaterialCatalog.name.asc()).all()
