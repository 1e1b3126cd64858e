import logging
from typing import List, Optional

from sqlmodel import Session, select, or_, col

from workshop.database import store_lock
from workshop.errors import (
    DuplicateCode,
    InsufficientStock,
    InvalidInputError,
    LaborNotFound,
    UnknownPart,
)
from workshop.models import (
    InventoryCreate,
    InventoryItem,
    InventoryPatch,
    LaborCreate,
    LaborItem,
    LaborPatch,
)

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Estoque de peças e preços do catálogo de mão de obra.
    Toda reserva/devolução é gravada imediatamente, sob o lock do estoque.
    """

    def __init__(self, session: Session):
        self.session = session

    # --- Movimentos de estoque ---

    def reserve(self, code: str, qty: int) -> int:
        """Baixa qty unidades. Nunca deixa o estoque negativo."""
        if qty <= 0:
            raise InvalidInputError("Quantidade deve ser positiva")
        with store_lock("inventory"):
            item = self.session.get(InventoryItem, code)
            if item is None:
                raise InsufficientStock(f"Peça {code} não existe no estoque")
            self.session.refresh(item)
            if qty > item.quantity:
                logger.warning("Reserva recusada: %s pedido=%s disponível=%s", code, qty, item.quantity)
                raise InsufficientStock(
                    f"Estoque insuficiente para {code}. Disponível: {item.quantity}, solicitado: {qty}"
                )
            item.quantity -= qty
            self.session.add(item)
            self.session.commit()
            self.session.refresh(item)
            logger.info("Reserva: %s -%s (restam %s)", code, qty, item.quantity)
            return item.quantity

    def release(self, code: str, qty: int) -> int:
        """Devolve qty unidades ao estoque (estorno)."""
        if qty <= 0:
            raise InvalidInputError("Quantidade deve ser positiva")
        with store_lock("inventory"):
            item = self.session.get(InventoryItem, code)
            if item is None:
                raise UnknownPart(f"Peça {code} não existe no estoque")
            self.session.refresh(item)
            item.quantity += qty
            self.session.add(item)
            self.session.commit()
            self.session.refresh(item)
            logger.info("Devolução: %s +%s (total %s)", code, qty, item.quantity)
            return item.quantity

    def price_of(self, code: str) -> float:
        item = self.session.get(InventoryItem, code)
        if item is None:
            raise UnknownPart(f"Peça {code} não existe no estoque")
        return item.unit_price

    def labor_price_of(self, code: str) -> float:
        return self.get_labor(code).unit_price

    # --- Cadastro de peças ---

    def list_parts(self, search: str = "", vehicle_id: Optional[int] = None) -> List[InventoryItem]:
        query = select(InventoryItem)
        if search:
            query = query.where(
                (col(InventoryItem.name).ilike(f"%{search}%")) |
                (col(InventoryItem.code).ilike(f"%{search}%"))
            )
        if vehicle_id is not None:
            # Peças universais + peças do veículo
            query = query.where(or_(col(InventoryItem.vehicle_id).is_(None), InventoryItem.vehicle_id == vehicle_id))
        return list(self.session.exec(query).all())

    def get_part(self, code: str) -> InventoryItem:
        item = self.session.get(InventoryItem, code)
        if item is None:
            raise UnknownPart(f"Peça {code} não encontrada")
        return item

    def create_part(self, data: InventoryCreate) -> InventoryItem:
        code = (data.code or "").strip()
        if not code or not (data.name or "").strip():
            raise InvalidInputError("Código e nome são obrigatórios")
        self._check_amounts(data.quantity, data.unit_price)
        with store_lock("inventory"):
            if self.session.get(InventoryItem, code) is not None:
                raise DuplicateCode(f"Já existe uma peça com o código {code}")
            item = InventoryItem.model_validate(data, update={"code": code, "name": data.name.strip()})
            self.session.add(item)
            self.session.commit()
            self.session.refresh(item)
        logger.info("Peça cadastrada: %s", code)
        return item

    def update_part(self, code: str, patch: InventoryPatch) -> InventoryItem:
        with store_lock("inventory"):
            item = self.get_part(code)
            # vehicle_id nulo é válido: torna a peça universal
            changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if v is not None or k == "vehicle_id"}
            self._check_amounts(changes.get("quantity", item.quantity), changes.get("unit_price", item.unit_price))
            if "name" in changes and not (changes["name"] or "").strip():
                raise InvalidInputError("Nome é obrigatório")
            item.sqlmodel_update(changes)
            self.session.add(item)
            self.session.commit()
            self.session.refresh(item)
        return item

    def delete_part(self, code: str) -> None:
        with store_lock("inventory"):
            item = self.get_part(code)
            self.session.delete(item)
            self.session.commit()
        logger.info("Peça removida do cadastro: %s", code)

    # --- Catálogo de mão de obra ---

    def list_labor(self) -> List[LaborItem]:
        return list(self.session.exec(select(LaborItem)).all())

    def get_labor(self, code: str) -> LaborItem:
        item = self.session.get(LaborItem, code)
        if item is None:
            raise LaborNotFound(f"Serviço {code} não encontrado no catálogo")
        return item

    def create_labor(self, data: LaborCreate) -> LaborItem:
        code = (data.code or "").strip()
        if not code or not (data.name or "").strip():
            raise InvalidInputError("Código e nome são obrigatórios")
        self._check_amounts(0, data.unit_price)
        if self.session.get(LaborItem, code) is not None:
            raise DuplicateCode(f"Já existe um serviço com o código {code}")
        item = LaborItem.model_validate(data, update={"code": code})
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def update_labor(self, code: str, patch: LaborPatch) -> LaborItem:
        item = self.get_labor(code)
        changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if v is not None}
        self._check_amounts(0, changes.get("unit_price", item.unit_price))
        item.sqlmodel_update(changes)
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def delete_labor(self, code: str) -> None:
        item = self.get_labor(code)
        self.session.delete(item)
        self.session.commit()

    @staticmethod
    def _check_amounts(quantity, unit_price) -> None:
        if quantity is None or int(quantity) < 0:
            raise InvalidInputError("Quantidade deve ser >= 0")
        if unit_price is None or float(unit_price) < 0:
            raise InvalidInputError("Preço deve ser >= 0")
