import threading

import pytest
from sqlmodel import Session, create_engine

from workshop.database import create_db_and_tables
from workshop.errors import DuplicateCode, InsufficientStock, InvalidInputError, UnknownPart
from workshop.ledger import InventoryLedger
from workshop.models import InventoryCreate, InventoryItem, InventoryPatch


def add_part(ledger, code="P1", quantity=5, unit_price=100.0, vehicle_id=None):
    return ledger.create_part(InventoryCreate(
        code=code, name=f"Repuesto {code}", quantity=quantity, unit_price=unit_price, vehicle_id=vehicle_id
    ))


def test_reserve_decrements_and_refuses_oversell(ledger):
    add_part(ledger, "P1", quantity=5, unit_price=100.0)

    assert ledger.reserve("P1", 3) == 2
    assert ledger.price_of("P1") == 100.0

    with pytest.raises(InsufficientStock):
        ledger.reserve("P1", 3)
    assert ledger.get_part("P1").quantity == 2


def test_reserve_unknown_part_is_insufficient_stock(ledger):
    with pytest.raises(InsufficientStock):
        ledger.reserve("NOPE", 1)


def test_reserve_rejects_non_positive_quantity(ledger):
    add_part(ledger)
    with pytest.raises(InvalidInputError):
        ledger.reserve("P1", 0)
    assert ledger.get_part("P1").quantity == 5


def test_release_restores_stock(ledger):
    add_part(ledger, quantity=1)
    ledger.reserve("P1", 1)
    assert ledger.get_part("P1").quantity == 0
    assert ledger.release("P1", 1) == 1


def test_release_unknown_part(ledger):
    with pytest.raises(UnknownPart):
        ledger.release("NOPE", 2)


def test_stock_never_negative_over_a_sequence(ledger):
    add_part(ledger, quantity=4)
    expected = 4
    operations = [("reserve", 3), ("reserve", 2), ("release", 1), ("reserve", 2),
                  ("reserve", 1), ("release", 5), ("reserve", 6), ("reserve", 5)]

    for operation, qty in operations:
        if operation == "release":
            expected += qty
            assert ledger.release("P1", qty) == expected
        elif qty > expected:
            with pytest.raises(InsufficientStock):
                ledger.reserve("P1", qty)
        else:
            expected -= qty
            assert ledger.reserve("P1", qty) == expected
        assert ledger.get_part("P1").quantity == expected >= 0


def test_reserve_is_persisted_immediately(engine, ledger):
    add_part(ledger, quantity=5)
    ledger.reserve("P1", 2)

    with Session(engine) as other:
        assert other.get(InventoryItem, "P1").quantity == 3


def test_concurrent_reservations_do_not_lose_updates(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'stock.db'}", connect_args={"check_same_thread": False})
    create_db_and_tables(engine)
    with Session(engine) as session:
        add_part(InventoryLedger(session), quantity=15)

    outcomes = []

    def worker():
        with Session(engine) as session:
            try:
                InventoryLedger(session).reserve("P1", 1)
                outcomes.append("ok")
            except InsufficientStock:
                outcomes.append("refused")

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    with Session(engine) as session:
        remaining = session.get(InventoryItem, "P1").quantity
    assert outcomes.count("ok") == 15
    assert outcomes.count("refused") == 5
    assert remaining == 0
    engine.dispose()


def test_create_part_rejects_duplicate_code(ledger):
    add_part(ledger, "P1")
    with pytest.raises(DuplicateCode):
        add_part(ledger, "P1")


def test_create_part_rejects_negative_values(ledger):
    with pytest.raises(InvalidInputError):
        add_part(ledger, quantity=-1)
    with pytest.raises(InvalidInputError):
        add_part(ledger, unit_price=-5)


def test_update_part_cannot_make_stock_negative(ledger):
    add_part(ledger)
    with pytest.raises(InvalidInputError):
        ledger.update_part("P1", InventoryPatch(quantity=-3))
    item = ledger.update_part("P1", InventoryPatch(unit_price=120.0))
    assert item.unit_price == 120.0
    assert item.quantity == 5


def test_list_parts_for_vehicle_includes_universal_parts(ledger):
    add_part(ledger, "U1")
    add_part(ledger, "V7", vehicle_id=7)
    add_part(ledger, "V9", vehicle_id=9)

    codes = [item.code for item in ledger.list_parts(vehicle_id=7)]
    assert sorted(codes) == ["U1", "V7"]
    assert len(ledger.list_parts()) == 3
