from typing import List, Optional

from sqlmodel import Session, select

from workshop.errors import ClientNotFound, DuplicateCode, InvalidInputError, UserNotFound
from workshop.models import Client, Role, User, Vehicle


class Directory:
    """Consulta de clientes, veículos e equipe usada pelas citas e OTs."""

    def __init__(self, session: Session):
        self.session = session

    def get_client(self, client_id: str) -> Client:
        client = self.session.get(Client, client_id)
        if client is None:
            raise ClientNotFound(f"Cliente {client_id} não encontrado")
        return client

    def get_vehicle(self, plate: str) -> Optional[Vehicle]:
        return self.session.get(Vehicle, plate)

    def list_clients(self) -> List[Client]:
        return list(self.session.exec(select(Client)).all())

    def add_client(self, client: Client) -> Client:
        if not client.id.strip() or not client.name.strip():
            raise InvalidInputError("Cédula e nome são obrigatórios")
        if self.session.get(Client, client.id) is not None:
            raise DuplicateCode(f"Cliente {client.id} já cadastrado")
        self.session.add(client)
        self.session.commit()
        self.session.refresh(client)
        return client

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        self.get_client(vehicle.client_id)
        if not vehicle.plate.strip():
            raise InvalidInputError("Placa é obrigatória")
        if self.session.get(Vehicle, vehicle.plate) is not None:
            raise DuplicateCode(f"Veículo {vehicle.plate} já cadastrado")
        self.session.add(vehicle)
        self.session.commit()
        self.session.refresh(vehicle)
        return vehicle

    def users(self, role: Optional[Role] = None) -> List[User]:
        query = select(User)
        if role is not None:
            query = query.where(User.role == role)
        return list(self.session.exec(query).all())

    def add_user(self, user: User) -> User:
        if not user.name.strip():
            raise InvalidInputError("Nome é obrigatório")
        if self.session.get(User, user.name) is not None:
            raise DuplicateCode(f"Usuário {user.name} já cadastrado")
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_mechanic(self, name: str) -> User:
        user = self.session.get(User, name)
        if user is None or user.role != Role.MECHANIC:
            raise UserNotFound(f"Mecânico {name} não encontrado")
        return user
