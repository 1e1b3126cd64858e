from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from workshop.database import create_db_and_tables, get_session
from workshop.directory import Directory
from workshop.ids import SequentialIdProvider, get_id_provider
from workshop.ledger import InventoryLedger
from workshop.main import app, get_clock
from workshop.models import (
    AppointmentCreate,
    Client,
    InventoryCreate,
    LaborCreate,
    Role,
    User,
    Vehicle,
)
from workshop.quotations import QuotationEngine
from workshop.scheduler import AppointmentScheduler
from workshop.work_orders import WorkOrderEngine

DAY = date(2024, 5, 6)
CLIENT_ID = "1-1111-1111"
PLATES = ["ABC123", "BCD234", "CDE345", "DEF456"]


class FakeClock:
    """Relógio que anda um segundo a cada leitura."""

    def __init__(self, start=datetime(2024, 5, 6, 8, 0, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def ids():
    return SequentialIdProvider()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(session):
    return InventoryLedger(session)


@pytest.fixture
def scheduler(session, ids, clock):
    return AppointmentScheduler(session, ids, clock)


@pytest.fixture
def orders(session, ids, clock, ledger):
    return WorkOrderEngine(session, ids, clock, ledger)


@pytest.fixture
def quotations(session, ids, clock, ledger):
    return QuotationEngine(session, ids, clock, ledger)


@pytest.fixture
def directory(session):
    directory = Directory(session)
    directory.add_client(Client(id=CLIENT_ID, name="María Rojas", phone="8888-1234"))
    for plate in PLATES:
        directory.add_vehicle(Vehicle(plate=plate, client_id=CLIENT_ID, make="Toyota", model="Hilux"))
    directory.add_user(User(name="Ana", role=Role.MECHANIC))
    directory.add_user(User(name="Luis", role=Role.MECHANIC))
    directory.add_user(User(name="Admin", role=Role.ADMIN))
    return directory


@pytest.fixture
def stock(ledger):
    ledger.create_part(InventoryCreate(code="P1", name="Filtro de aceite", quantity=5, unit_price=100.0))
    ledger.create_part(InventoryCreate(code="P2", name="Pastillas de freno", quantity=10, unit_price=2500.0))
    ledger.create_labor(LaborCreate(code="L1", name="Cambio de aceite", unit_price=15000.0))
    return ledger


def book(scheduler, plate, time, date=DAY, **extra):
    return scheduler.create(AppointmentCreate(
        client_id=CLIENT_ID, vehicle_plate=plate, date=date, time=time, **extra
    ))


@pytest.fixture
def accepted_appointment(directory, scheduler):
    appointment = book(scheduler, PLATES[0], "09:00", description="Ruido al frenar")
    return scheduler.assign_mechanic(appointment.id, "Ana")


@pytest.fixture
def client(engine, ids, clock):
    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_id_provider] = lambda: ids
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


def fail_commit(monkeypatch, target, call):
    """Faz o commit número `call` de `target` (sessão ou classe Session) falhar."""
    original = target.commit
    calls = []

    def commit(*args):
        calls.append(1)
        if len(calls) == call:
            raise SQLAlchemyError("disk I/O error")
        return original(*args)

    monkeypatch.setattr(target, "commit", commit)
    return calls
