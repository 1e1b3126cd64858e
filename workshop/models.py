import datetime as dt
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utc_now() -> dt.datetime:
    """Momento atual com fuso (UTC)."""
    return dt.datetime.now(dt.timezone.utc)


def timestamp_field(**kwargs):
    # Coluna com fuso; o SQLite devolve o valor sem o offset
    return Field(sa_type=DateTime(timezone=True), **kwargs)


# --- Enums ---
class AppointmentState(str, Enum):
    """Estados possíveis de uma Cita."""
    WAITING = "Waiting"       # Em espera
    ACCEPTED = "Accepted"     # Aceita (mecânico atribuído)
    CANCELLED = "Cancelled"   # Cancelada


class WorkOrderState(str, Enum):
    """Estados possíveis de uma Ordem de Trabalho."""
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    FINISHED = "Finished"
    CANCELLED = "Cancelled"


class Role(str, Enum):
    ADMIN = "admin"
    MECHANIC = "mechanic"


UNASSIGNED = "Unassigned"

# --- Diretório (clientes, veículos, equipe) ---

class Client(SQLModel, table=True):
    """
    Representa um Cliente da oficina.
    O id é o documento de identidade (cédula).
    """
    id: str = Field(primary_key=True, description="Cédula do cliente")
    name: str = Field(description="Nome completo do cliente")
    phone: Optional[str] = Field(default=None, description="Telefone para contato/WhatsApp")
    email: Optional[str] = None


class Vehicle(SQLModel, table=True):
    plate: str = Field(primary_key=True, description="Placa do veículo")
    client_id: str = Field(foreign_key="client.id", index=True)
    make: str = ""
    model: str = ""
    catalog_id: Optional[int] = Field(default=None, description="Referência ao catálogo de veículos")


class User(SQLModel, table=True):
    """Membro da equipe. Usado para filtrar mecânicos atribuíveis."""
    name: str = Field(primary_key=True)
    role: Role = Field(default=Role.MECHANIC)


# --- Estoque e catálogo de mão de obra ---

class InventoryItem(SQLModel, table=True):
    """
    Representa um item no Estoque (Peça).
    vehicle_id nulo significa peça universal.
    """
    code: str = Field(primary_key=True)
    name: str
    description: str = ""
    quantity: int = Field(default=0, description="Quantidade atual em estoque")
    unit_price: float = Field(default=0.0, description="Preço de venda")
    vehicle_id: Optional[int] = Field(default=None, index=True)


class LaborItem(SQLModel, table=True):
    """Serviço do catálogo de mão de obra com seu preço de referência."""
    code: str = Field(primary_key=True)
    name: str
    description: str = ""
    unit_price: float = 0.0


# --- Citas ---

class Appointment(SQLModel, table=True):
    id: int = Field(primary_key=True)
    client_id: str = Field(index=True)
    client_name: str
    vehicle_plate: str = Field(index=True)
    date: dt.date
    time: str = Field(description="Hora no formato HH:MM")
    description: str = ""
    mechanic: str = Field(default=UNASSIGNED, index=True)
    state: AppointmentState = Field(default=AppointmentState.WAITING)
    created_at: dt.datetime = timestamp_field(default_factory=utc_now)


# --- Ordens de Trabalho ---

class WorkOrder(SQLModel, table=True):
    """
    Registro oficial do trabalho feito para uma Cita aceita.
    Copia os dados da cita no momento da criação.
    """
    code: str = Field(primary_key=True)
    appointment_id: int = Field(unique=True, index=True)
    client_id: str
    client_name: str
    vehicle_plate: str
    appointment_date: dt.date
    appointment_time: str
    appointment_description: str = ""
    initial_observations: str = ""
    mechanic: str = UNASSIGNED
    state: WorkOrderState = Field(default=WorkOrderState.PENDING)
    created_at: dt.datetime = timestamp_field(default_factory=utc_now)


class DiagnosticNote(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    order_code: str = Field(foreign_key="workorder.code", index=True)
    text: str
    created_at: dt.datetime = timestamp_field(default_factory=utc_now)


class WorkOrderService(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    order_code: str = Field(foreign_key="workorder.code", index=True)
    labor_code: str
    name: str
    unit_price: float = Field(description="Preço do serviço no momento do registro")


class WorkOrderPart(SQLModel, table=True):
    """
    Peça usada na OT.
    Registra o preço no momento da reserva (congela o preço).
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    order_code: str = Field(foreign_key="workorder.code", index=True)
    part_code: str
    name: str
    quantity: int
    unit_price: float
    subtotal: float


# --- Cotações / Proformas ---

class Quotation(SQLModel, table=True):
    code: str = Field(primary_key=True)
    client_id: str
    client_name: str
    vehicle_plate: str = ""
    work_order_code: Optional[str] = None
    labor_discount_percent: float = 0.0
    parts_subtotal: float = 0.0
    labor_subtotal: float = 0.0
    discount_amount: float = 0.0
    taxable_base: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    is_proforma: bool = False
    state: str = "draft"
    created_at: dt.datetime = timestamp_field(default_factory=utc_now)
    updated_at: dt.datetime = timestamp_field(default_factory=utc_now)
    proforma_at: Optional[dt.datetime] = timestamp_field(default=None)


class QuotationPart(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    quotation_code: str = Field(foreign_key="quotation.code", index=True)
    code: str = ""
    name: str = ""
    quantity: int
    unit_price: float
    subtotal: float


class QuotationLabor(SQLModel, table=True):
    """Linha de mão de obra: horas x tarifa, ou valor fixo quando hours é nulo."""
    id: Optional[int] = Field(default=None, primary_key=True)
    quotation_code: str = Field(foreign_key="quotation.code", index=True)
    code: str = ""
    name: str = ""
    hours: Optional[float] = None
    rate: float
    subtotal: float


# --- Relatórios de incidentes ---

class IncidentReport(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    kind: str
    actor: str
    description: str
    status: str = "open"
    created_at: dt.datetime = timestamp_field(default_factory=utc_now)


# --- Modelos de entrada (payloads da API) ---

class InventoryCreate(SQLModel):
    code: str
    name: str
    description: str = ""
    quantity: int = 0
    unit_price: float = 0.0
    vehicle_id: Optional[int] = None


class InventoryPatch(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[float] = None
    vehicle_id: Optional[int] = None


class LaborCreate(SQLModel):
    code: str
    name: str
    description: str = ""
    unit_price: float = 0.0


class LaborPatch(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    unit_price: Optional[float] = None


class AppointmentCreate(SQLModel):
    client_id: str
    vehicle_plate: str
    date: dt.date
    time: str
    description: str = ""
    replace_active: bool = False


class AppointmentPatch(SQLModel):
    date: Optional[dt.date] = None
    time: Optional[str] = None
    description: Optional[str] = None
    state: Optional[AppointmentState] = None
    replace_active: bool = False


class WorkOrderCreate(SQLModel):
    appointment_id: int
    initial_observations: str = ""
    mechanic: Optional[str] = None


class WorkOrderPatch(SQLModel):
    # code e appointment_id são aceitos mas ignorados: não mudam após a criação
    code: Optional[str] = None
    appointment_id: Optional[int] = None
    initial_observations: Optional[str] = None
    mechanic: Optional[str] = None


class QuotationPartIn(SQLModel):
    code: str = ""
    name: str = ""
    quantity: int = 1
    unit_price: Optional[float] = None


class QuotationLaborIn(SQLModel):
    code: str = ""
    name: str = ""
    hours: Optional[float] = 1.0
    # Sem tarifa, usa o preço do catálogo (pelo code)
    rate: Optional[float] = None


class QuotationCreate(SQLModel):
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    vehicle_plate: str = ""
    work_order_code: Optional[str] = None
    parts: List[QuotationPartIn] = []
    labor_lines: List[QuotationLaborIn] = []
    labor_discount_percent: float = 0.0
    state: str = "draft"


class QuotationPatch(SQLModel):
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    vehicle_plate: Optional[str] = None
    work_order_code: Optional[str] = None
    parts: Optional[List[QuotationPartIn]] = None
    labor_lines: Optional[List[QuotationLaborIn]] = None
    labor_discount_percent: Optional[float] = None
    state: Optional[str] = None


class ClientCreate(SQLModel):
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class VehicleCreate(SQLModel):
    plate: str
    make: str = ""
    model: str = ""
    catalog_id: Optional[int] = None


class UserCreate(SQLModel):
    name: str
    role: Role = Role.MECHANIC


class MechanicAssignment(SQLModel):
    mechanic: str


class StateChange(SQLModel):
    state: str


class PartLineCreate(SQLModel):
    part_code: str
    quantity: int = 1


class ServiceLineCreate(SQLModel):
    labor_code: str


class NoteCreate(SQLModel):
    text: str


class DraftFromWorkOrder(SQLModel):
    labor_discount_percent: float = 0.0


class ReportCreate(SQLModel):
    kind: str = "general"
    description: str
