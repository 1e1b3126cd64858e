import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from workshop.models import IncidentReport, utc_now

logger = logging.getLogger(__name__)


class ReportSink:
    """
    Registro de incidentes (ex.: mecânico tentando uma alteração proibida).
    O envio não devolve nada: quem chama não depende do resultado.
    """

    def __init__(self, session: Session, clock: Callable[[], datetime] = utc_now):
        self.session = session
        self.clock = clock

    def submit(self, kind: str, actor: str, description: str,
               timestamp: Optional[datetime] = None) -> None:
        report = IncidentReport(
            kind=kind,
            actor=actor,
            description=description,
            created_at=timestamp or self.clock(),
        )
        try:
            self.session.add(report)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Falha ao registrar incidente %s de %s", kind, actor)

    def list(self, kind: Optional[str] = None) -> List[IncidentReport]:
        query = select(IncidentReport)
        if kind:
            query = query.where(IncidentReport.kind == kind)
        return list(self.session.exec(query.order_by(IncidentReport.id)).all())
