import datetime as dt
import logging
from typing import Callable, List, Optional

from sqlmodel import Session, select, col

from workshop.database import store_lock
from workshop.directory import Directory
from workshop.errors import (
    ActiveAppointmentExists,
    AppointmentNotFound,
    InvalidInputError,
    InvalidTransition,
    SchedulingConflict,
)
from workshop.ids import IdProvider
from workshop.models import (
    UNASSIGNED,
    Appointment,
    AppointmentCreate,
    AppointmentPatch,
    AppointmentState,
    utc_now,
)

logger = logging.getLogger(__name__)

# Janela mínima entre duas citas do mesmo mecânico no mesmo dia
SLOT_MINUTES = 60


def to_minutes(value: str) -> int:
    """Converte 'HH:MM' (ou 'HH:MM:SS') em minutos desde a meia-noite."""
    try:
        parts = [int(p) for p in (value or "").strip().split(":")]
    except ValueError:
        raise InvalidInputError(f"Hora inválida: {value!r}")
    if len(parts) not in (2, 3) or not 0 <= parts[0] < 24 or not 0 <= parts[1] < 60:
        raise InvalidInputError(f"Hora inválida: {value!r}")
    return parts[0] * 60 + parts[1]


def normalize_time(value: str) -> str:
    minutes = to_minutes(value)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class AppointmentScheduler:
    """Agenda de citas e verificação de disponibilidade dos mecânicos."""

    def __init__(self, session: Session, ids: IdProvider, clock: Callable[[], dt.datetime] = utc_now):
        self.session = session
        self.ids = ids
        self.clock = clock
        self.directory = Directory(session)

    def list(self, search: str = "", mechanic: Optional[str] = None) -> List[Appointment]:
        query = select(Appointment)
        if search:
            query = query.where(
                (col(Appointment.client_name).ilike(f"%{search}%")) |
                (col(Appointment.client_id).contains(search)) |
                (col(Appointment.vehicle_plate).ilike(f"%{search}%"))
            )
        if mechanic:
            query = query.where(Appointment.mechanic == mechanic)
        return list(self.session.exec(query.order_by(Appointment.id)).all())

    def get(self, appointment_id: int) -> Appointment:
        appointment = self.session.get(Appointment, appointment_id)
        if appointment is None:
            raise AppointmentNotFound(f"Cita {appointment_id} não encontrada")
        return appointment

    def check_availability(self, mechanic: str, date: dt.date, time: str,
                           exclude_id: Optional[int] = None) -> bool:
        """
        Heurística de horário fixo: o mecânico está ocupado se já tiver outra
        cita ativa no mesmo dia a menos de 60 minutos do horário pedido.
        """
        if not mechanic or mechanic == UNASSIGNED:
            return True
        candidate = to_minutes(time)
        query = select(Appointment).where(
            Appointment.mechanic == mechanic,
            Appointment.date == date,
            Appointment.state != AppointmentState.CANCELLED,
        )
        for other in self.session.exec(query).all():
            if exclude_id is not None and other.id == exclude_id:
                continue
            if abs(to_minutes(other.time) - candidate) < SLOT_MINUTES:
                return False
        return True

    def create(self, data: AppointmentCreate) -> Appointment:
        client = self.directory.get_client(data.client_id)
        plate = (data.vehicle_plate or "").strip()
        vehicle = self.directory.get_vehicle(plate)
        if vehicle is None:
            raise InvalidInputError(f"Veículo {plate} não cadastrado")
        if vehicle.client_id != client.id:
            raise InvalidInputError(f"Veículo {plate} não pertence ao cliente {client.id}")
        time = normalize_time(data.time)

        with store_lock("appointments"):
            self._resolve_active(plate, data.replace_active)
            appointment = Appointment(
                id=self.ids.next_int(),
                client_id=client.id,
                client_name=client.name,
                vehicle_plate=plate,
                date=data.date,
                time=time,
                description=data.description,
                created_at=self.clock(),
            )
            self.session.add(appointment)
            self.session.commit()
            self.session.refresh(appointment)
        logger.info("Cita %s criada para %s (%s %s)", appointment.id, plate, appointment.date, time)
        return appointment

    def assign_mechanic(self, appointment_id: int, mechanic: str) -> Appointment:
        self.directory.get_mechanic(mechanic)
        with store_lock("appointments"):
            appointment = self.get(appointment_id)
            if appointment.state == AppointmentState.CANCELLED:
                raise InvalidTransition("Cita cancelada não pode receber mecânico")
            if not self.check_availability(mechanic, appointment.date, appointment.time, exclude_id=appointment.id):
                logger.warning("Conflito de agenda: %s em %s %s", mechanic, appointment.date, appointment.time)
                raise SchedulingConflict(
                    f"{mechanic} já tem uma cita próxima de {appointment.time} em {appointment.date}"
                )
            appointment.mechanic = mechanic
            appointment.state = AppointmentState.ACCEPTED
            self.session.add(appointment)
            self.session.commit()
            self.session.refresh(appointment)
        logger.info("Cita %s aceita por %s", appointment_id, mechanic)
        return appointment

    def update(self, appointment_id: int, patch: AppointmentPatch) -> Appointment:
        changes = {
            key: value
            for key, value in patch.model_dump(exclude_unset=True, exclude={"replace_active"}).items()
            if value is not None
        }
        with store_lock("appointments"):
            appointment = self.get(appointment_id)
            current = appointment.state
            new_state = changes.get("state", current)

            if current == AppointmentState.ACCEPTED and new_state != current:
                raise InvalidTransition("Cita aceita não pode mudar de estado pela edição")
            if new_state == AppointmentState.ACCEPTED and current != AppointmentState.ACCEPTED:
                raise InvalidTransition("Para aceitar a cita é preciso atribuir um mecânico")

            if "time" in changes:
                changes["time"] = normalize_time(changes["time"])
            date = changes.get("date", appointment.date)
            time = changes.get("time", appointment.time)
            moved = (date, time) != (appointment.date, appointment.time)
            if moved and current == AppointmentState.ACCEPTED:
                if not self.check_availability(appointment.mechanic, date, time, exclude_id=appointment.id):
                    raise SchedulingConflict(f"{appointment.mechanic} não está disponível em {date} {time}")

            if current == AppointmentState.CANCELLED and new_state == AppointmentState.WAITING:
                self._resolve_active(appointment.vehicle_plate, patch.replace_active, exclude_id=appointment.id)
            if new_state == AppointmentState.CANCELLED:
                # Cita cancelada libera o horário do mecânico
                changes["mechanic"] = UNASSIGNED

            appointment.sqlmodel_update(changes)
            self.session.add(appointment)
            self.session.commit()
            self.session.refresh(appointment)
        return appointment

    def delete(self, appointment_id: int) -> None:
        with store_lock("appointments"):
            appointment = self.get(appointment_id)
            if appointment.state != AppointmentState.CANCELLED:
                raise InvalidTransition("Só citas canceladas podem ser eliminadas")
            self.session.delete(appointment)
            self.session.commit()
        logger.info("Cita %s eliminada", appointment_id)

    def _resolve_active(self, plate: str, replace: bool, exclude_id: Optional[int] = None) -> None:
        """Uma cita ativa por veículo: cancela a anterior ou recusa a nova."""
        query = select(Appointment).where(
            Appointment.vehicle_plate == plate,
            Appointment.state != AppointmentState.CANCELLED,
        )
        active = [a for a in self.session.exec(query).all() if a.id != exclude_id]
        if not active:
            return
        if not replace:
            raise ActiveAppointmentExists(
                f"O veículo {plate} já tem a cita ativa {active[0].id}"
            )
        for previous in active:
            previous.state = AppointmentState.CANCELLED
            previous.mechanic = UNASSIGNED
            self.session.add(previous)
            logger.info("Cita %s cancelada (substituída)", previous.id)
