import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import settings
from schemas import FORMAT_B, IngestionSummary
from services.alias_resolver import AliasResolver
from services.positional_mapper import cell_text, map_rows
from services.row_reader import RawRow

TODAY = date(2024, 6, 1)


def _row(source_row=2, when=datetime(2024, 1, 15), ref="G-1", cus_no=1234, name="Waterstones",
         title="Book A", ean="9780000000011", qty=3, total=37.5):
    cells = [when, ref, cus_no, name, None, title, None, ean, qty, total]
    return RawRow(source_row=source_row, values=dict(enumerate(cells)))


def _summary():
    return IngestionSummary(data_type=FORMAT_B, source_file="gazelle.xlsx", upload_batch_id="batch-b")


def test_row_maps_by_position():
    summary = _summary()
    record = map_rows([_row()], AliasResolver(), summary, today=TODAY)[0]

    assert record.order_date == date(2024, 1, 15)
    assert record.order_reference == "G-1"
    assert record.customer_number == "1234"
    assert record.customer_name == "Waterstones"
    assert record.title == "Book A"
    assert record.item_code == "9780000000011"
    assert record.quantity == 3
    assert record.total == Decimal("37.50")
    assert record.country == settings.FORMAT_B_DEFAULT_COUNTRY
    assert record.city == "Unknown"
    assert (record.data_type, record.source_row, record.upload_batch_id) == (FORMAT_B, 2, "batch-b")
    assert summary.unknown_customers == 0


def test_blank_customer_name_is_unknown_and_counted():
    summary = _summary()
    records = map_rows([_row(name=None), _row(source_row=3, name="   ")], AliasResolver(), summary, today=TODAY)
    assert [r.customer_name for r in records] == ["Unknown", "Unknown"]
    assert summary.unknown_customers == 2


def test_customer_name_is_aliased_but_not_cleaned():
    aliases = AliasResolver({"WATERSTONES  LTD": "Waterstones"})
    records = map_rows(
        [_row(name="waterstones ltd"), _row(name="123 Main Street")], aliases, _summary(), today=TODAY
    )
    assert records[0].customer_name == "Waterstones"
    assert records[1].customer_name == "123 Main Street"


def test_missing_order_reference_is_synthesized_and_unique():
    records = map_rows(
        [_row(source_row=5, ref=None), _row(source_row=6, ref="")], AliasResolver(), _summary(), today=TODAY
    )
    assert records[0].order_reference.startswith("gazelle_5_batch-b_")
    assert records[1].order_reference.startswith("gazelle_6_batch-b_")
    assert records[0].order_reference != records[1].order_reference


def test_defaults_for_unusable_cells():
    record = map_rows(
        [_row(when="garbage", title=None, ean=None, qty="n/a", total="free")], AliasResolver(), _summary(), today=TODAY
    )[0]
    assert record.order_date == TODAY
    assert record.title == "Unknown"
    assert record.item_code is None
    assert record.quantity == 0
    assert record.total == Decimal("0.00")


def test_date_variants():
    rows = [_row(when=45306), _row(source_row=3, when="15/01/2024"), _row(source_row=4, when="2024-01-15")]
    assert [r.order_date for r in map_rows(rows, AliasResolver(), _summary(), today=TODAY)] == [date(2024, 1, 15)] * 3


def test_cell_text():
    assert cell_text(1234.0) == "1234"
    assert cell_text(12.5) == "12.5"
    assert cell_text(None) == ""
    assert cell_text("  G-1 ") == "G-1"
