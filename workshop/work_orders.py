import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select, col

from workshop.database import store_lock
from workshop.directory import Directory
from workshop.errors import (
    AppointmentNotAccepted,
    AppointmentNotFound,
    DuplicateWorkOrder,
    InvalidInputError,
    InvalidTransition,
    NotFoundError,
    WorkOrderNotFound,
)
from workshop.ids import IdProvider
from workshop.ledger import InventoryLedger
from workshop.models import (
    Appointment,
    AppointmentState,
    DiagnosticNote,
    WorkOrder,
    WorkOrderPart,
    WorkOrderPatch,
    WorkOrderService,
    WorkOrderState,
    utc_now,
)
from workshop.money import line_total, money

logger = logging.getLogger(__name__)

# Tabela de transições da OT. Todas as mudanças são permitidas, como no
# fluxo original da oficina; para restringir, basta tirar estados daqui.
WORK_ORDER_TRANSITIONS = {
    state: frozenset(WorkOrderState) for state in WorkOrderState
}


class WorkOrderEngine:
    """
    Ordens de Trabalho (OT): uma por cita aceita.
    Peças adicionadas ou removidas movimentam o estoque na mesma operação.
    """

    def __init__(self, session: Session, ids: IdProvider,
                 clock: Callable[[], datetime] = utc_now,
                 ledger: Optional[InventoryLedger] = None):
        self.session = session
        self.ids = ids
        self.clock = clock
        self.ledger = ledger or InventoryLedger(session)

    # --- Consultas ---

    def list(self, mechanic: Optional[str] = None, search: str = "") -> List[WorkOrder]:
        query = select(WorkOrder)
        if mechanic:
            query = query.where(WorkOrder.mechanic == mechanic)
        if search:
            query = query.where(
                (col(WorkOrder.code).ilike(f"%{search}%")) |
                (col(WorkOrder.vehicle_plate).ilike(f"%{search}%")) |
                (col(WorkOrder.client_name).ilike(f"%{search}%")) |
                (col(WorkOrder.client_id).contains(search))
            )
        return list(self.session.exec(query.order_by(WorkOrder.created_at, WorkOrder.code)).all())

    def get(self, code: str) -> WorkOrder:
        order = self.session.get(WorkOrder, code)
        if order is None:
            raise WorkOrderNotFound(f"OT {code} não encontrada")
        return order

    def parts(self, code: str) -> List[WorkOrderPart]:
        query = select(WorkOrderPart).where(WorkOrderPart.order_code == code).order_by(WorkOrderPart.id)
        return list(self.session.exec(query).all())

    def services(self, code: str) -> List[WorkOrderService]:
        query = select(WorkOrderService).where(WorkOrderService.order_code == code).order_by(WorkOrderService.id)
        return list(self.session.exec(query).all())

    def notes(self, code: str) -> List[DiagnosticNote]:
        query = select(DiagnosticNote).where(DiagnosticNote.order_code == code).order_by(DiagnosticNote.id)
        return list(self.session.exec(query).all())

    def detail(self, code: str) -> dict:
        order = self.get(code)
        self.session.refresh(order)
        parts = self.parts(code)
        services = self.services(code)
        return {
            **order.model_dump(),
            "diagnostic_notes": [n.model_dump() for n in self.notes(code)],
            "services_performed": [s.model_dump() for s in services],
            "parts_used": [p.model_dump() for p in parts],
            "parts_total": float(money(sum(money(p.subtotal) for p in parts))),
            "services_total": float(money(sum(money(s.unit_price) for s in services))),
        }

    # --- Criação e edição ---

    def create_from_appointment(self, appointment_id: int, initial_observations: str = "",
                                mechanic: Optional[str] = None) -> WorkOrder:
        if mechanic:
            Directory(self.session).get_mechanic(mechanic)
        with store_lock("work_orders"):
            appointment = self.session.get(Appointment, appointment_id)
            if appointment is None:
                raise AppointmentNotFound(f"Cita {appointment_id} não encontrada")
            if appointment.state != AppointmentState.ACCEPTED:
                raise AppointmentNotAccepted(
                    f"A cita {appointment_id} precisa estar aceita (estado atual: {appointment.state.value})"
                )
            existing = self.session.exec(
                select(WorkOrder).where(WorkOrder.appointment_id == appointment_id)
            ).first()
            if existing is not None:
                raise DuplicateWorkOrder(f"A cita {appointment_id} já tem a OT {existing.code}")

            order = WorkOrder(
                code=self.ids.next_code("OT"),
                appointment_id=appointment.id,
                client_id=appointment.client_id,
                client_name=appointment.client_name,
                vehicle_plate=appointment.vehicle_plate,
                appointment_date=appointment.date,
                appointment_time=appointment.time,
                appointment_description=appointment.description,
                initial_observations=(initial_observations or "").strip(),
                mechanic=mechanic or appointment.mechanic,
                created_at=self.clock(),
            )
            self.session.add(order)
            self.session.commit()
            self.session.refresh(order)
        logger.info("OT %s criada a partir da cita %s", order.code, appointment_id)
        return order

    def update(self, code: str, patch: WorkOrderPatch) -> WorkOrder:
        changes = {
            key: value
            for key, value in patch.model_dump(exclude_unset=True, exclude={"code", "appointment_id"}).items()
            if value is not None
        }
        with store_lock("work_orders"):
            order = self.get(code)
            order.sqlmodel_update(changes)
            self.session.add(order)
            self.session.commit()
            self.session.refresh(order)
        return order

    def set_state(self, code: str, new_state) -> WorkOrder:
        try:
            target = WorkOrderState(new_state)
        except ValueError:
            raise InvalidInputError(f"Estado inválido: {new_state!r}")
        with store_lock("work_orders"):
            order = self.get(code)
            if target not in WORK_ORDER_TRANSITIONS[order.state]:
                raise InvalidTransition(f"OT {code}: {order.state.value} -> {target.value} não permitido")
            previous = order.state
            order.state = target
            self.session.add(order)
            self.session.commit()
            self.session.refresh(order)
        logger.info("OT %s: %s -> %s", code, previous.value, target.value)
        return order

    # --- Peças (movimentam o estoque) ---

    def add_part(self, code: str, part_code: str, qty: int) -> WorkOrderPart:
        with store_lock("work_orders"):
            self.get(code)
            with store_lock("inventory"):
                self.ledger.reserve(part_code, qty)
                item = self.ledger.get_part(part_code)
                line = WorkOrderPart(
                    order_code=code,
                    part_code=item.code,
                    name=item.name,
                    quantity=qty,
                    unit_price=item.unit_price,
                    subtotal=float(line_total(qty, item.unit_price)),
                )
            self.session.add(line)
            try:
                self.session.commit()
            except SQLAlchemyError:
                self.session.rollback()
                self.ledger.release(part_code, qty)
                raise
            self.session.refresh(line)
        logger.info("OT %s: +%s x %s", code, qty, part_code)
        return line

    def remove_part(self, code: str, line_index: int) -> dict:
        with store_lock("work_orders"):
            self.get(code)
            lines = self.parts(code)
            if not 0 <= line_index < len(lines):
                raise NotFoundError(f"A OT {code} não tem a linha de peça {line_index}")
            line = lines[line_index]
            removed = line.model_dump()
            # Se a devolução falhar, a linha continua na OT
            self.ledger.release(line.part_code, line.quantity)
            self.session.delete(line)
            try:
                self.session.commit()
            except SQLAlchemyError:
                self.session.rollback()
                self.ledger.reserve(removed["part_code"], removed["quantity"])
                raise
        logger.info("OT %s: -%s x %s (estorno)", code, removed["quantity"], removed["part_code"])
        return removed

    # --- Serviços ---

    def add_service(self, code: str, labor_code: str) -> WorkOrderService:
        with store_lock("work_orders"):
            self.get(code)
            labor = self.ledger.get_labor(labor_code)
            line = WorkOrderService(
                order_code=code,
                labor_code=labor.code,
                name=labor.name,
                unit_price=labor.unit_price,
            )
            self.session.add(line)
            self.session.commit()
            self.session.refresh(line)
        return line

    def remove_service(self, code: str, line_index: int) -> dict:
        with store_lock("work_orders"):
            self.get(code)
            lines = self.services(code)
            if not 0 <= line_index < len(lines):
                raise NotFoundError(f"A OT {code} não tem a linha de serviço {line_index}")
            removed = lines[line_index].model_dump()
            self.session.delete(lines[line_index])
            self.session.commit()
        return removed

    # --- Diagnóstico ---

    def add_diagnostic_note(self, code: str, text: str) -> DiagnosticNote:
        text = (text or "").strip()
        if not text:
            raise InvalidInputError("A nota de diagnóstico não pode ser vazia")
        with store_lock("work_orders"):
            self.get(code)
            note = DiagnosticNote(order_code=code, text=text, created_at=self.clock())
            self.session.add(note)
            self.session.commit()
            self.session.refresh(note)
        return note

    def remove_diagnostic_note(self, code: str, note_id: int) -> None:
        with store_lock("work_orders"):
            self.get(code)
            note = self.session.get(DiagnosticNote, note_id)
            if note is None or note.order_code != code:
                raise NotFoundError(f"Nota {note_id} não encontrada na OT {code}")
            self.session.delete(note)
            self.session.commit()
