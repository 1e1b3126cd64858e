import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from sqlmodel import Session, select, col

from workshop.database import store_lock
from workshop.errors import (
    AlreadyProforma,
    EmptyQuotation,
    InvalidInputError,
    MissingClient,
    ProformaImmutable,
    QuotationNotFound,
)
from workshop.ids import IdProvider
from workshop.ledger import InventoryLedger
from workshop.models import (
    Quotation,
    QuotationCreate,
    QuotationLabor,
    QuotationLaborIn,
    QuotationPart,
    QuotationPartIn,
    QuotationPatch,
    utc_now,
)
from workshop.money import line_total, money, to_decimal
from workshop.work_orders import WorkOrderEngine

logger = logging.getLogger(__name__)

TAX_RATE = Decimal("0.13")
MAX_LABOR_DISCOUNT = Decimal("20")
PROFORMA_STATE = "proforma"


@dataclass(frozen=True)
class Totals:
    parts_subtotal: Decimal
    labor_subtotal: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    taxable_base: Decimal
    tax: Decimal
    total: Decimal

    def as_fields(self) -> dict:
        return {
            "parts_subtotal": float(self.parts_subtotal),
            "labor_subtotal": float(self.labor_subtotal),
            "labor_discount_percent": float(self.discount_percent),
            "discount_amount": float(self.discount_amount),
            "taxable_base": float(self.taxable_base),
            "tax": float(self.tax),
            "total": float(self.total),
        }


def clamp_discount(percent) -> Decimal:
    return min(max(to_decimal(percent), Decimal("0")), MAX_LABOR_DISCOUNT)


def labor_line_total(hours, rate) -> Decimal:
    """Horas x tarifa; sem horas, a tarifa é o valor fixo da linha."""
    if hours is None:
        return money(rate)
    return line_total(hours, rate)


def compute_totals(parts: Iterable, labor_lines: Iterable, discount_percent=0) -> Totals:
    """
    Função pura. Cada linha é arredondada antes de somar; o desconto vale
    só para a mão de obra e o imposto (13%) incide sobre a base.
    """
    parts_subtotal = money(sum((line_total(p.quantity, p.unit_price) for p in parts), Decimal("0")))
    labor_subtotal = money(sum((labor_line_total(l.hours, l.rate) for l in labor_lines), Decimal("0")))
    discount = clamp_discount(discount_percent)
    discount_amount = money(labor_subtotal * discount / 100)
    taxable_base = money(parts_subtotal + labor_subtotal - discount_amount)
    tax = money(taxable_base * TAX_RATE)
    return Totals(
        parts_subtotal=parts_subtotal,
        labor_subtotal=labor_subtotal,
        discount_percent=discount,
        discount_amount=discount_amount,
        taxable_base=taxable_base,
        tax=tax,
        total=money(taxable_base + tax),
    )


class QuotationEngine:
    """Cotações editáveis; depois de virar proforma o documento fica congelado."""

    def __init__(self, session: Session, ids: IdProvider,
                 clock: Callable[[], datetime] = utc_now,
                 ledger: Optional[InventoryLedger] = None):
        self.session = session
        self.ids = ids
        self.clock = clock
        self.ledger = ledger or InventoryLedger(session)

    # --- Consultas ---

    def list(self, search: str = "") -> List[Quotation]:
        query = select(Quotation)
        if search:
            query = query.where(
                (col(Quotation.code).ilike(f"%{search}%")) |
                (col(Quotation.client_name).ilike(f"%{search}%")) |
                (col(Quotation.work_order_code).ilike(f"%{search}%"))
            )
        return list(self.session.exec(query.order_by(Quotation.created_at, Quotation.code)).all())

    def get(self, code: str) -> Quotation:
        quotation = self.session.get(Quotation, code)
        if quotation is None:
            raise QuotationNotFound(f"Cotação {code} não encontrada")
        return quotation

    def parts(self, code: str) -> List[QuotationPart]:
        query = select(QuotationPart).where(QuotationPart.quotation_code == code).order_by(QuotationPart.id)
        return list(self.session.exec(query).all())

    def labor_lines(self, code: str) -> List[QuotationLabor]:
        query = select(QuotationLabor).where(QuotationLabor.quotation_code == code).order_by(QuotationLabor.id)
        return list(self.session.exec(query).all())

    def detail(self, code: str) -> dict:
        quotation = self.get(code)
        self.session.refresh(quotation)
        return {
            **quotation.model_dump(),
            "parts": [p.model_dump() for p in self.parts(code)],
            "labor_lines": [l.model_dump() for l in self.labor_lines(code)],
        }

    # --- Escrita ---

    def create(self, data: QuotationCreate) -> Quotation:
        client_id = (data.client_id or "").strip()
        client_name = (data.client_name or "").strip()
        if not client_id or not client_name:
            raise MissingClient("Informe nome e cédula do cliente")
        if not data.parts and not data.labor_lines:
            raise EmptyQuotation("Adicione pelo menos uma peça ou uma linha de mão de obra")
        self._check_state_label(data.state)
        parts = self._resolve_parts(data.parts)
        labor = self._resolve_labor(data.labor_lines)
        totals = compute_totals(parts, labor, data.labor_discount_percent)

        with store_lock("quotations"):
            now = self.clock()
            quotation = Quotation(
                code=self.ids.next_code("COT"),
                client_id=client_id,
                client_name=client_name,
                vehicle_plate=(data.vehicle_plate or "").strip(),
                work_order_code=data.work_order_code or None,
                is_proforma=False,
                state=data.state or "draft",
                created_at=now,
                updated_at=now,
                **totals.as_fields(),
            )
            self.session.add(quotation)
            self._write_lines(quotation.code, parts, labor)
            self.session.commit()
            self.session.refresh(quotation)
        logger.info("Cotação %s criada (total %s)", quotation.code, totals.total)
        return quotation

    def draft_from_work_order(self, order_code: str, discount_percent=0) -> Quotation:
        """Rascunho com as peças e serviços da OT, pelos preços já capturados nela."""
        orders = WorkOrderEngine(self.session, self.ids, self.clock, self.ledger)
        order = orders.get(order_code)
        parts = [
            QuotationPartIn(code=p.part_code, name=p.name, quantity=p.quantity, unit_price=p.unit_price)
            for p in orders.parts(order_code)
        ]
        labor = [
            QuotationLaborIn(code=s.labor_code, name=s.name, hours=None, rate=s.unit_price)
            for s in orders.services(order_code)
        ]
        return self.create(QuotationCreate(
            client_id=order.client_id,
            client_name=order.client_name,
            vehicle_plate=order.vehicle_plate,
            work_order_code=order.code,
            parts=parts,
            labor_lines=labor,
            labor_discount_percent=discount_percent,
        ))

    def update(self, code: str, patch: QuotationPatch) -> Quotation:
        changes = patch.model_dump(exclude_unset=True, exclude={"parts", "labor_lines"})
        with store_lock("quotations"):
            quotation = self.get(code)
            if quotation.is_proforma:
                raise ProformaImmutable(f"{code} é uma proforma e não pode ser alterada")

            for field in ("client_id", "client_name"):
                if field in changes:
                    changes[field] = (changes[field] or "").strip()
                    if not changes[field]:
                        raise MissingClient("Informe nome e cédula do cliente")
            if "state" in changes:
                if changes["state"] is None:
                    del changes["state"]
                else:
                    self._check_state_label(changes["state"])
            for field in ("labor_discount_percent", "vehicle_plate"):
                if changes.get(field) is None:
                    changes.pop(field, None)

            parts = self._resolve_parts(patch.parts) if patch.parts is not None else self.parts(code)
            labor = self._resolve_labor(patch.labor_lines) if patch.labor_lines is not None else self.labor_lines(code)
            if not parts and not labor:
                raise EmptyQuotation("Adicione pelo menos uma peça ou uma linha de mão de obra")

            discount = changes.pop("labor_discount_percent", quotation.labor_discount_percent)
            totals = compute_totals(parts, labor, discount)
            quotation.sqlmodel_update(changes)
            quotation.sqlmodel_update(totals.as_fields())
            quotation.updated_at = self.clock()
            if patch.parts is not None or patch.labor_lines is not None:
                self._write_lines(code, parts, labor)
            self.session.add(quotation)
            self.session.commit()
            self.session.refresh(quotation)
        return quotation

    def convert_to_proforma(self, code: str) -> Quotation:
        with store_lock("quotations"):
            quotation = self.get(code)
            if quotation.is_proforma:
                raise AlreadyProforma(f"{code} já é uma proforma")
            totals = compute_totals(self.parts(code), self.labor_lines(code), quotation.labor_discount_percent)
            now = self.clock()
            quotation.sqlmodel_update(totals.as_fields())
            quotation.is_proforma = True
            quotation.state = PROFORMA_STATE
            quotation.proforma_at = now
            quotation.updated_at = now
            self.session.add(quotation)
            self.session.commit()
            self.session.refresh(quotation)
        logger.info("Cotação %s convertida em proforma", code)
        return quotation

    def delete(self, code: str) -> None:
        with store_lock("quotations"):
            quotation = self.get(code)
            if quotation.is_proforma:
                raise ProformaImmutable(f"{code} é uma proforma e não pode ser eliminada")
            self._delete_lines(code)
            self.session.delete(quotation)
            self.session.commit()
        logger.info("Cotação %s eliminada", code)

    # --- Auxiliares ---

    @staticmethod
    def _check_state_label(state: Optional[str]) -> None:
        if (state or "").strip().lower() == PROFORMA_STATE:
            raise InvalidInputError("Use a conversão para proforma em vez de editar o estado")

    def _resolve_parts(self, lines: List[QuotationPartIn]) -> List[QuotationPartIn]:
        resolved = []
        for line in lines:
            if line.quantity is None or line.quantity <= 0:
                raise InvalidInputError("Quantidade deve ser positiva")
            unit_price, name = line.unit_price, line.name
            if unit_price is None or not name:
                if not line.code:
                    raise InvalidInputError("Linha de peça sem código precisa de nome e preço")
                item = self.ledger.get_part(line.code)
                unit_price = item.unit_price if unit_price is None else unit_price
                name = name or item.name
            if unit_price < 0:
                raise InvalidInputError("Preço deve ser >= 0")
            resolved.append(line.model_copy(update={"unit_price": unit_price, "name": name}))
        return resolved

    def _resolve_labor(self, lines: List[QuotationLaborIn]) -> List[QuotationLaborIn]:
        resolved = []
        for line in lines:
            rate, name = line.rate, line.name
            if rate is None or not name:
                if not line.code:
                    raise InvalidInputError("Linha de mão de obra sem código precisa de descrição e tarifa")
                labor = self.ledger.get_labor(line.code)
                rate = labor.unit_price if rate is None else rate
                name = name or labor.name
            if rate < 0 or (line.hours is not None and line.hours <= 0):
                raise InvalidInputError("Horas e tarifa devem ser positivas")
            resolved.append(line.model_copy(update={"rate": rate, "name": name}))
        return resolved

    def _delete_lines(self, code: str) -> None:
        for line in self.parts(code) + self.labor_lines(code):
            self.session.delete(line)

    def _write_lines(self, code: str, parts: Iterable, labor: Iterable) -> None:
        self._delete_lines(code)
        for p in parts:
            self.session.add(QuotationPart(
                quotation_code=code, code=p.code, name=p.name, quantity=p.quantity,
                unit_price=p.unit_price, subtotal=float(line_total(p.quantity, p.unit_price)),
            ))
        for l in labor:
            self.session.add(QuotationLabor(
                quotation_code=code, code=l.code, name=l.name, hours=l.hours,
                rate=l.rate, subtotal=float(labor_line_total(l.hours, l.rate)),
            ))
