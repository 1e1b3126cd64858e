from decimal import Decimal

import pytest

from conftest import CLIENT_ID
from workshop.errors import (
    AlreadyProforma,
    EmptyQuotation,
    InvalidInputError,
    MissingClient,
    ProformaImmutable,
    QuotationNotFound,
    UnknownPart,
    WorkOrderNotFound,
)
from workshop.models import (
    InventoryPatch,
    QuotationCreate,
    QuotationLaborIn,
    QuotationPartIn,
    QuotationPatch,
)
from workshop.quotations import PROFORMA_STATE, clamp_discount, compute_totals


def part(quantity, unit_price, code="X"):
    return QuotationPartIn(code=code, name=f"Peça {code}", quantity=quantity, unit_price=unit_price)


def labor(hours, rate, code="M"):
    return QuotationLaborIn(code=code, name=f"Serviço {code}", hours=hours, rate=rate)


def new_quotation(quotations, parts=(), labor_lines=(), discount=0.0, **extra):
    data = dict(client_id=CLIENT_ID, client_name="María Rojas", vehicle_plate="ABC123")
    data.update(extra)
    return quotations.create(QuotationCreate(
        parts=list(parts), labor_lines=list(labor_lines), labor_discount_percent=discount, **data
    ))


# --- Cálculo ---

def test_totals_with_labor_discount():
    totals = compute_totals([part(2, 50)], [labor(1, 1000)], 10)

    assert totals.parts_subtotal == Decimal("100.00")
    assert totals.labor_subtotal == Decimal("1000.00")
    assert totals.discount_amount == Decimal("100.00")
    assert totals.taxable_base == Decimal("1000.00")
    assert totals.tax == Decimal("130.00")
    assert totals.total == Decimal("1130.00")


def test_discount_is_clamped():
    assert clamp_discount(35) == Decimal("20")
    assert clamp_discount(-5) == Decimal("0")
    assert clamp_discount(12.5) == Decimal("12.5")

    totals = compute_totals([], [labor(1, 1000)], 35)
    assert totals.discount_percent == Decimal("20")
    assert totals.discount_amount == Decimal("200.00")
    assert compute_totals([], [labor(1, 1000)], -5).discount_amount == Decimal("0.00")


def test_discount_never_touches_parts():
    totals = compute_totals([part(1, 500)], [], 20)
    assert totals.discount_amount == Decimal("0.00")
    assert totals.taxable_base == Decimal("500.00")
    assert totals.total == Decimal("565.00")


def test_rounding_is_half_up():
    assert compute_totals([], [labor(1.5, 33.33)]).labor_subtotal == Decimal("50.00")
    assert compute_totals([part(1, 0.125)], []).parts_subtotal == Decimal("0.13")


def test_each_line_is_rounded_before_summing():
    lines = [part(1, 0.005, code=c) for c in "ABC"]
    assert compute_totals(lines, []).parts_subtotal == Decimal("0.03")


def test_labor_without_hours_is_a_flat_amount():
    totals = compute_totals([], [labor(None, 15000)])
    assert totals.labor_subtotal == Decimal("15000.00")


def test_totals_are_deterministic():
    parts, lines = [part(3, 19.99), part(1, 7.45)], [labor(2.5, 1234.56)]
    assert compute_totals(parts, lines, 7.5) == compute_totals(parts, lines, 7.5)


# --- Cotações gravadas ---

def test_create_stores_lines_and_totals(quotations):
    quotation = new_quotation(quotations, [part(2, 50)], [labor(1, 1000)], discount=10)

    assert quotation.code.startswith("COT-")
    assert quotation.total == 1130.0
    assert quotation.state == "draft"
    assert not quotation.is_proforma

    detail = quotations.detail(quotation.code)
    assert [p["subtotal"] for p in detail["parts"]] == [100.0]
    assert [l["subtotal"] for l in detail["labor_lines"]] == [1000.0]


def test_client_and_lines_are_required(quotations):
    with pytest.raises(MissingClient):
        new_quotation(quotations, [part(1, 10)], client_id="  ")
    with pytest.raises(MissingClient):
        new_quotation(quotations, [part(1, 10)], client_name=None)
    with pytest.raises(EmptyQuotation):
        new_quotation(quotations)
    assert quotations.list() == []


def test_missing_prices_come_from_the_catalog(stock, quotations):
    quotation = new_quotation(
        quotations,
        [QuotationPartIn(code="P2", quantity=2)],
        [QuotationLaborIn(code="L1", hours=None)],
    )

    lines = quotations.parts(quotation.code)
    assert (lines[0].name, lines[0].unit_price) == ("Pastillas de freno", 2500.0)
    assert quotations.labor_lines(quotation.code)[0].rate == 15000.0
    assert quotation.parts_subtotal == 5000.0

    with pytest.raises(UnknownPart):
        new_quotation(quotations, [QuotationPartIn(code="NOPE")])


def test_quotations_do_not_move_stock(stock, quotations, ledger):
    new_quotation(quotations, [QuotationPartIn(code="P1", quantity=4)])
    assert ledger.get_part("P1").quantity == 5


def test_price_changes_do_not_alter_stored_quotation(stock, quotations, ledger):
    quotation = new_quotation(quotations, [QuotationPartIn(code="P1", quantity=1)])
    ledger.update_part("P1", InventoryPatch(unit_price=999.0))

    assert quotations.get(quotation.code).parts_subtotal == 100.0
    assert quotations.parts(quotation.code)[0].unit_price == 100.0


def test_update_recomputes_totals(quotations):
    quotation = new_quotation(quotations, [part(2, 50)], [labor(1, 1000)])
    assert quotation.total == 1243.0

    updated = quotations.update(quotation.code, QuotationPatch(labor_discount_percent=10))
    assert updated.total == 1130.0
    assert len(quotations.parts(quotation.code)) == 1

    updated = quotations.update(quotation.code, QuotationPatch(parts=[part(1, 200)], client_name="María R."))
    assert updated.parts_subtotal == 200.0
    assert updated.labor_subtotal == 1000.0
    assert updated.client_name == "María R."
    assert [l.rate for l in quotations.labor_lines(quotation.code)] == [1000.0]


def test_update_validation(quotations):
    quotation = new_quotation(quotations, [part(1, 10)])

    with pytest.raises(MissingClient):
        quotations.update(quotation.code, QuotationPatch(client_id=""))
    with pytest.raises(EmptyQuotation):
        quotations.update(quotation.code, QuotationPatch(parts=[]))
    with pytest.raises(InvalidInputError):
        quotations.update(quotation.code, QuotationPatch(state=PROFORMA_STATE))
    with pytest.raises(QuotationNotFound):
        quotations.update("COT-9999", QuotationPatch(client_name="X"))

    assert quotations.get(quotation.code).client_id == CLIENT_ID


def test_proforma_is_frozen(quotations):
    quotation = new_quotation(quotations, [part(1, 10)])

    proforma = quotations.convert_to_proforma(quotation.code)
    assert proforma.is_proforma
    assert proforma.state == PROFORMA_STATE
    assert proforma.proforma_at is not None

    with pytest.raises(ProformaImmutable):
        quotations.update(quotation.code, QuotationPatch(client_name="Otro"))
    with pytest.raises(ProformaImmutable):
        quotations.delete(quotation.code)
    with pytest.raises(AlreadyProforma):
        quotations.convert_to_proforma(quotation.code)

    assert quotations.get(quotation.code).client_name == "María Rojas"


def test_draft_can_be_deleted(quotations):
    quotation = new_quotation(quotations, [part(1, 10)], [labor(1, 10)])
    quotations.delete(quotation.code)

    with pytest.raises(QuotationNotFound):
        quotations.get(quotation.code)
    assert quotations.parts(quotation.code) == []
    assert quotations.labor_lines(quotation.code) == []


def test_draft_from_work_order_uses_captured_prices(stock, orders, quotations, ledger, accepted_appointment):
    order = orders.create_from_appointment(accepted_appointment.id)
    orders.add_part(order.code, "P1", 2)
    orders.add_service(order.code, "L1")
    ledger.update_part("P1", InventoryPatch(unit_price=150.0))

    quotation = quotations.draft_from_work_order(order.code, 10)

    assert quotation.work_order_code == order.code
    assert quotation.client_name == "María Rojas"
    assert quotation.parts_subtotal == 200.0
    assert quotation.labor_subtotal == 15000.0
    assert quotation.discount_amount == 1500.0
    assert quotations.labor_lines(quotation.code)[0].hours is None
    # O rascunho não baixa estoque de novo
    assert ledger.get_part("P1").quantity == 3

    with pytest.raises(WorkOrderNotFound):
        quotations.draft_from_work_order("OT-9999")


def test_list_search(quotations):
    first = new_quotation(quotations, [part(1, 10)])
    new_quotation(quotations, [part(1, 10)], client_name="Pedro Mora")

    assert [q.code for q in quotations.list(search="maría")] == [first.code]
    assert len(quotations.list()) == 2
