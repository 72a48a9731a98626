import json
from decimal import Decimal
from types import SimpleNamespace

from vilo.services.credit_memo_service import mirror_line_items, tax_breakdown, to_cents


def _booking(lines):
    return SimpleNamespace(booking_reference="VILO-ABC123", line_items_json=json.dumps(lines))


def test_to_cents_rounds_half_up():
    assert to_cents(Decimal("10.005")) == 1001
    assert to_cents("0") == 0


def test_full_refund_mirrors_the_invoice():
    lines = [
        {"description": "Accommodation", "quantity": 3, "unit_price": 1500},
        {"description": "Cleaning fee", "quantity": 1, "unit_price": 500},
    ]
    items = mirror_line_items(_booking(lines), 500000)
    assert [(i["description"], i["total_cents"]) for i in items] == [("Accommodation", 450000), ("Cleaning fee", 50000)]
    assert items[0]["unit_price_cents"] == 150000


def test_partial_refund_keeps_proportions_and_sums_exactly():
    lines = [
        {"description": "Night 1", "quantity": 1, "unit_price": 333.33},
        {"description": "Night 2", "quantity": 1, "unit_price": 333.33},
        {"description": "Night 3", "quantity": 1, "unit_price": 333.34},
    ]
    items = mirror_line_items(_booking(lines), 10000)
    assert sum(i["total_cents"] for i in items) == 10000
    assert [i["total_cents"] for i in items][:2] == [3333, 3333]


def test_no_invoice_lines_gives_a_single_line():
    items = mirror_line_items(_booking([]), 2500)
    assert items == [{
        "description": "Refund for booking VILO-ABC123",
        "quantity": 1,
        "unit_price_cents": 2500,
        "total_cents": 2500,
    }]


def test_tax_breakdown_for_inclusive_totals():
    assert tax_breakdown(11500, Decimal("15")) == (10000, 1500)
    assert tax_breakdown(50000, Decimal("0")) == (50000, 0)
