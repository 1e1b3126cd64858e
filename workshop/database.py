import threading
from contextlib import contextmanager

from sqlmodel import SQLModel, create_engine, Session

from workshop.config import DATABASE_URL
from workshop.models import *  # noqa: F401,F403 - registra as tabelas no metadata

# Configurações para SQLite (necessário para evitar erros de thread em alguns casos)
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

# Um escritor por coleção. Ordem de aquisição: work_orders antes de inventory.
_store_locks = {
    "inventory": threading.RLock(),
    "appointments": threading.RLock(),
    "work_orders": threading.RLock(),
    "quotations": threading.RLock(),
}


def create_db_and_tables(bind=None):
    """
    Cria o banco de dados e todas as tabelas definidas nos modelos.
    Deve ser chamado na inicialização da aplicação.
    """
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """
    Dependência para obter uma sessão do banco de dados.
    Gerencia o ciclo de vida da sessão (abre e fecha automaticamente).
    """
    with Session(engine) as session:
        yield session


@contextmanager
def store_lock(name: str):
    """Serializa o ciclo ler-modificar-gravar de uma coleção."""
    with _store_locks[name]:
        yield
