"""
GST calculation for Indian GST compliance.

Rules:
- Same state (supplier == client)  -> CGST + SGST, split equally
- Different states                 -> IGST at the full rate

All amounts are rounded to the paisa with ROUND_HALF_UP (half away from
zero). ``total_gst`` is rounded from the unrounded tax, not summed from the
rounded halves, so it can differ from cgst + sgst by at most 0.01.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

PAISA = Decimal("0.01")

GST_TYPE_CGST_SGST = "CGST_SGST"
GST_TYPE_IGST = "IGST"


def round_money(value) -> Decimal:
    """Round any numeric input to 2 decimals, half away from zero"""
    return Decimal(str(value)).quantize(PAISA, rounding=ROUND_HALF_UP)


def normalize_state(state: str | None) -> str:
    return (state or "").strip().upper()


@dataclass(frozen=True)
class GstBreakdown:
    gst_type: str
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    total_gst: Decimal

    def as_dict(self) -> dict:
        return {
            "gst_type": self.gst_type,
            "cgst_amount": float(self.cgst_amount),
            "sgst_amount": float(self.sgst_amount),
            "igst_amount": float(self.igst_amount),
            "total_gst": float(self.total_gst),
        }


def calculate_gst(taxable_amount, gst_rate, supplier_state: str, client_state: str) -> GstBreakdown:
    taxable = Decimal(str(taxable_amount))
    rate = Decimal(str(gst_rate))
    unrounded_total = taxable * rate / Decimal("100")

    if normalize_state(supplier_state) == normalize_state(client_state):
        half = round_money(unrounded_total / 2)
        return GstBreakdown(
            gst_type=GST_TYPE_CGST_SGST,
            cgst_amount=half,
            sgst_amount=half,
            igst_amount=Decimal("0.00"),
            total_gst=round_money(unrounded_total),
        )

    igst = round_money(unrounded_total)
    return GstBreakdown(
        gst_type=GST_TYPE_IGST,
        cgst_amount=Decimal("0.00"),
        sgst_amount=Decimal("0.00"),
        igst_amount=igst,
        total_gst=igst,
    )


def price_with_gst(unit_price, quantity, gst_rate) -> tuple[Decimal, Decimal, Decimal]:
    """
    Base price, GST and total for a dispatch line.

    total is base + gst of the already-rounded parts, so it always equals
    their sum exactly.
    """
    base_price = round_money(Decimal(str(unit_price)) * Decimal(str(quantity)))
    gst_amount = round_money(base_price * Decimal(str(gst_rate)) / Decimal("100"))
    return base_price, gst_amount, base_price + gst_amount
