import datetime as dt
import logging
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from workshop.assistant import WorkOrderAssistant, get_assistant, whatsapp_link
from workshop.config import LOG_LEVEL
from workshop.database import create_db_and_tables, get_session
from workshop.directory import Directory
from workshop.errors import WorkshopError
from workshop.ids import IdProvider, get_id_provider
from workshop.ledger import InventoryLedger
from workshop.models import (
    Appointment,
    AppointmentCreate,
    AppointmentPatch,
    AppointmentState,
    Client,
    ClientCreate,
    DraftFromWorkOrder,
    InventoryCreate,
    InventoryItem,
    InventoryPatch,
    LaborCreate,
    LaborPatch,
    MechanicAssignment,
    NoteCreate,
    PartLineCreate,
    QuotationCreate,
    QuotationPatch,
    ReportCreate,
    Role,
    ServiceLineCreate,
    StateChange,
    User,
    UserCreate,
    Vehicle,
    VehicleCreate,
    WorkOrder,
    WorkOrderCreate,
    WorkOrderPatch,
    WorkOrderState,
    utc_now,
)
from workshop.permissions import Actor, get_actor, require_admin, require_order_access
from workshop.quotations import QuotationEngine
from workshop.reports import ReportSink
from workshop.scheduler import AppointmentScheduler
from workshop.work_orders import WorkOrderEngine

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Oficina API")
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


@app.on_event("startup")
def on_startup():
    create_db_and_tables()


@app.exception_handler(WorkshopError)
async def workshop_error_handler(request: Request, exc: WorkshopError):
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "code": exc.code, "error": exc.reason})


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    # Falha de leitura/gravação aborta só a requisição atual
    logger.exception("Erro no banco de dados em %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "code": "StoreError", "error": "Falha ao acessar o banco de dados"})


# --- Dependências ---

def get_clock():
    return utc_now


SessionDep = Annotated[Session, Depends(get_session)]
IdsDep = Annotated[IdProvider, Depends(get_id_provider)]
ActorDep = Annotated[Actor, Depends(get_actor)]


def get_reports(session: SessionDep, clock=Depends(get_clock)) -> ReportSink:
    return ReportSink(session, clock)


def get_ledger(session: SessionDep) -> InventoryLedger:
    return InventoryLedger(session)


def get_scheduler(session: SessionDep, ids: IdsDep, clock=Depends(get_clock)) -> AppointmentScheduler:
    return AppointmentScheduler(session, ids, clock)


def get_work_orders(session: SessionDep, ids: IdsDep, clock=Depends(get_clock)) -> WorkOrderEngine:
    return WorkOrderEngine(session, ids, clock)


def get_quotations(session: SessionDep, ids: IdsDep, clock=Depends(get_clock)) -> QuotationEngine:
    return QuotationEngine(session, ids, clock)


ReportsDep = Annotated[ReportSink, Depends(get_reports)]
LedgerDep = Annotated[InventoryLedger, Depends(get_ledger)]
SchedulerDep = Annotated[AppointmentScheduler, Depends(get_scheduler)]
WorkOrdersDep = Annotated[WorkOrderEngine, Depends(get_work_orders)]
QuotationsDep = Annotated[QuotationEngine, Depends(get_quotations)]


@app.get("/")
async def read_root(session: SessionDep):
    # 1. Calcular Valor Total do Estoque
    items = session.exec(select(InventoryItem)).all()
    total_inventory_value = round(sum(item.unit_price * item.quantity for item in items), 2)

    # 2. Contar Itens sem estoque
    out_of_stock_count = sum(1 for item in items if item.quantity == 0)

    # 3. Contar OTs abertas e citas em espera
    open_states = (WorkOrderState.PENDING, WorkOrderState.IN_PROGRESS)
    open_orders = session.exec(select(WorkOrder).where(WorkOrder.state.in_(open_states))).all()
    waiting = session.exec(select(Appointment).where(Appointment.state == AppointmentState.WAITING)).all()

    return {
        "total_inventory_value": total_inventory_value,
        "out_of_stock_count": out_of_stock_count,
        "open_work_orders": len(open_orders),
        "waiting_appointments": len(waiting),
    }


# --- Rotas de Estoque ---

@app.get("/inventory")
async def read_inventory(ledger: LedgerDep, search: str = "", vehicle_id: Optional[int] = None):
    return ledger.list_parts(search, vehicle_id)


@app.get("/inventory/{code}")
async def read_item(code: str, ledger: LedgerDep):
    return ledger.get_part(code)


@app.post("/inventory", status_code=201)
async def add_item(data: InventoryCreate, ledger: LedgerDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, "cadastrar peça", reports)
    return ledger.create_part(data)


@app.put("/inventory/{code}")
async def update_item(code: str, patch: InventoryPatch, ledger: LedgerDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, f"editar a peça {code}", reports)
    return ledger.update_part(code, patch)


@app.delete("/inventory/{code}")
async def delete_item(code: str, ledger: LedgerDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, f"eliminar a peça {code}", reports)
    ledger.delete_part(code)
    return Response(status_code=204)


# --- Rotas do catálogo de mão de obra ---

@app.get("/labor")
async def read_labor(ledger: LedgerDep):
    return ledger.list_labor()


@app.post("/labor", status_code=201)
async def add_labor(data: LaborCreate, ledger: LedgerDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, "cadastrar serviço", reports)
    return ledger.create_labor(data)


@app.put("/labor/{code}")
async def update_labor(code: str, patch: LaborPatch, ledger: LedgerDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, f"editar o serviço {code}", reports)
    return ledger.update_labor(code, patch)


@app.delete("/labor/{code}")
async def delete_labor(code: str, ledger: LedgerDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, f"eliminar o serviço {code}", reports)
    ledger.delete_labor(code)
    return Response(status_code=204)


# --- Rotas de Clientes e Equipe ---

@app.get("/clients")
async def read_clients(session: SessionDep):
    return Directory(session).list_clients()


@app.post("/clients", status_code=201)
async def add_client(data: ClientCreate, session: SessionDep):
    return Directory(session).add_client(Client.model_validate(data))


@app.post("/clients/{client_id}/vehicles", status_code=201)
async def add_vehicle(client_id: str, data: VehicleCreate, session: SessionDep):
    vehicle = Vehicle.model_validate(data, update={"client_id": client_id})
    return Directory(session).add_vehicle(vehicle)


@app.get("/users")
async def read_users(session: SessionDep, role: Optional[Role] = None):
    return Directory(session).users(role)


@app.post("/users", status_code=201)
async def add_user(data: UserCreate, session: SessionDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, "cadastrar usuário", reports)
    return Directory(session).add_user(User.model_validate(data))


# --- Rotas de Citas ---

@app.get("/appointments")
async def read_appointments(scheduler: SchedulerDep, search: str = "", mechanic: Optional[str] = None):
    return scheduler.list(search, mechanic)


@app.get("/appointments/availability")
async def check_availability(scheduler: SchedulerDep, mechanic: str, date: dt.date, time: str,
                             exclude_id: Optional[int] = None):
    available = scheduler.check_availability(mechanic, date, time, exclude_id)
    return {"mechanic": mechanic, "date": date, "time": time, "available": available}


@app.post("/appointments", status_code=201)
async def create_appointment(data: AppointmentCreate, scheduler: SchedulerDep):
    return scheduler.create(data)


@app.get("/appointments/{appointment_id}")
async def read_appointment(appointment_id: int, scheduler: SchedulerDep):
    return scheduler.get(appointment_id)


@app.put("/appointments/{appointment_id}")
async def update_appointment(appointment_id: int, patch: AppointmentPatch, scheduler: SchedulerDep):
    return scheduler.update(appointment_id, patch)


@app.post("/appointments/{appointment_id}/assign")
async def assign_mechanic(appointment_id: int, data: MechanicAssignment, scheduler: SchedulerDep,
                          actor: ActorDep, reports: ReportsDep):
    require_admin(actor, f"atribuir mecânico à cita {appointment_id}", reports)
    return scheduler.assign_mechanic(appointment_id, data.mechanic)


@app.delete("/appointments/{appointment_id}")
async def delete_appointment(appointment_id: int, scheduler: SchedulerDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, f"eliminar a cita {appointment_id}", reports)
    scheduler.delete(appointment_id)
    return Response(status_code=204)


# --- Rotas de OT ---

@app.get("/work-orders")
async def read_work_orders(orders: WorkOrdersDep, actor: ActorDep, search: str = ""):
    # Mecânico só enxerga as próprias OTs
    mechanic = None if actor.is_admin else actor.name
    return orders.list(mechanic, search)


@app.post("/work-orders", status_code=201)
async def create_work_order(data: WorkOrderCreate, orders: WorkOrdersDep, scheduler: SchedulerDep,
                            actor: ActorDep, reports: ReportsDep):
    appointment = scheduler.get(data.appointment_id)
    if appointment.mechanic != actor.name:
        require_admin(actor, f"abrir OT da cita {appointment.id}", reports)
    if data.mechanic and data.mechanic != appointment.mechanic:
        require_admin(actor, f"abrir a OT da cita {appointment.id} para {data.mechanic}", reports)
    order = orders.create_from_appointment(data.appointment_id, data.initial_observations, data.mechanic)
    return orders.detail(order.code)


@app.get("/work-orders/{code}")
async def read_work_order(code: str, orders: WorkOrdersDep, actor: ActorDep, reports: ReportsDep):
    require_order_access(actor, orders.get(code), "consultar", reports)
    return orders.detail(code)


@app.put("/work-orders/{code}")
async def update_work_order(code: str, patch: WorkOrderPatch, orders: WorkOrdersDep,
                            actor: ActorDep, reports: ReportsDep):
    require_order_access(actor, orders.get(code), "editar", reports)
    if patch.mechanic is not None:
        require_admin(actor, f"reatribuir a OT {code}", reports)
    orders.update(code, patch)
    return orders.detail(code)


@app.patch("/work-orders/{code}/state")
async def change_work_order_state(code: str, data: StateChange, orders: WorkOrdersDep,
                                  actor: ActorDep, reports: ReportsDep):
    require_order_access(actor, orders.get(code), "mudar o estado", reports)
    orders.set_state(code, data.state)
    return orders.detail(code)


@app.post("/work-orders/{code}/parts", status_code=201)
async def add_work_order_part(code: str, data: PartLineCreate, orders: WorkOrdersDep,
                              actor: ActorDep, reports: ReportsDep):
    require_order_access(actor, orders.get(code), "adicionar peça", reports)
    orders.add_part(code, data.part_code, data.quantity)
    return orders.detail(code)


@app.delete("/work-orders/{code}/parts/{line_index}")
async def delete_work_order_part(code: str, line_index: int, orders: WorkOrdersDep,
                                 actor: ActorDep, reports: ReportsDep):
    """Remove uma peça da OT e DEVOLVE ao estoque (Estorno)"""
    require_order_access(actor, orders.get(code), "remover peça", reports)
    orders.remove_part(code, line_index)
    return orders.detail(code)


@app.post("/work-orders/{code}/services", status_code=201)
async def add_work_order_service(code: str, data: ServiceLineCreate, orders: WorkOrdersDep,
                                 actor: ActorDep, reports: ReportsDep):
    require_order_access(actor, orders.get(code), "adicionar serviço", reports)
    orders.add_service(code, data.labor_code)
    return orders.detail(code)


@app.delete("/work-orders/{code}/services/{line_index}")
async def delete_work_order_service(code: str, line_index: int, orders: WorkOrdersDep,
                                    actor: ActorDep, reports: ReportsDep):
    require_order_access(actor, orders.get(code), "remover serviço", reports)
    orders.remove_service(code, line_index)
    return orders.detail(code)


@app.post("/work-orders/{code}/notes", status_code=201)
async def add_work_order_note(code: str, data: NoteCreate, orders: WorkOrdersDep,
                              actor: ActorDep, reports: ReportsDep):
    require_order_access(actor, orders.get(code), "registrar diagnóstico", reports)
    orders.add_diagnostic_note(code, data.text)
    return orders.detail(code)


@app.delete("/work-orders/{code}/notes/{note_id}")
async def delete_work_order_note(code: str, note_id: int, orders: WorkOrdersDep,
                                 actor: ActorDep, reports: ReportsDep):
    require_order_access(actor, orders.get(code), "remover diagnóstico", reports)
    orders.remove_diagnostic_note(code, note_id)
    return orders.detail(code)


# --- IA ---
@app.post("/work-orders/{code}/summary")
async def generate_summary(code: str, orders: WorkOrdersDep, session: SessionDep, actor: ActorDep,
                           reports: ReportsDep,
                           assistant: Annotated[WorkOrderAssistant, Depends(get_assistant)]):
    require_order_access(actor, orders.get(code), "gerar mensagem", reports)
    order = orders.detail(code)
    message = assistant.customer_message(order)
    client = session.get(Client, order["client_id"])
    return {
        "ok": True,
        "message": message,
        "whatsapp_link": whatsapp_link(client.phone if client else None, message),
    }


# --- Rotas de Cotações ---

@app.get("/quotations")
async def read_quotations(quotations: QuotationsDep, search: str = ""):
    return quotations.list(search)


@app.post("/quotations", status_code=201)
async def create_quotation(data: QuotationCreate, quotations: QuotationsDep):
    quotation = quotations.create(data)
    return quotations.detail(quotation.code)


@app.post("/quotations/from-work-order/{order_code}", status_code=201)
async def create_quotation_from_order(order_code: str, quotations: QuotationsDep, data: Optional[DraftFromWorkOrder] = None):
    discount = data.labor_discount_percent if data else 0
    quotation = quotations.draft_from_work_order(order_code, discount)
    return quotations.detail(quotation.code)


@app.get("/quotations/{code}")
async def read_quotation(code: str, quotations: QuotationsDep):
    return quotations.detail(code)


@app.put("/quotations/{code}")
async def update_quotation(code: str, patch: QuotationPatch, quotations: QuotationsDep):
    quotations.update(code, patch)
    return quotations.detail(code)


@app.patch("/quotations/{code}/proforma")
async def convert_to_proforma(code: str, quotations: QuotationsDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, f"gerar proforma de {code}", reports)
    quotations.convert_to_proforma(code)
    return quotations.detail(code)


@app.delete("/quotations/{code}")
async def delete_quotation(code: str, quotations: QuotationsDep, actor: ActorDep, reports: ReportsDep):
    require_admin(actor, f"eliminar a cotação {code}", reports)
    quotations.delete(code)
    return Response(status_code=204)


@app.get("/quotations/{code}/print", response_class=HTMLResponse)
async def print_quotation(code: str, request: Request, quotations: QuotationsDep, clock=Depends(get_clock)):
    """Rota simplificada apenas para impressão"""
    return templates.TemplateResponse(request, "print_quotation.html", {
        "quotation": quotations.detail(code),
        "now": clock(),
    })


# --- Relatórios ---

@app.get("/reports")
async def read_reports(reports: ReportsDep, actor: ActorDep, kind: Optional[str] = None):
    require_admin(actor, "consultar relatórios", reports)
    return reports.list(kind)


@app.post("/reports", status_code=202)
async def submit_report(data: ReportCreate, reports: ReportsDep, actor: ActorDep):
    reports.submit(data.kind, actor.name, data.description)
    return {"ok": True}
