class WorkshopError(Exception):
    """Erro de negócio esperado e recuperável. Vira uma resposta JSON na API."""

    status_code = 400

    def __init__(self, reason: str = ""):
        super().__init__(reason or self.__class__.__name__)
        self.reason = reason or self.__class__.__name__

    @property
    def code(self) -> str:
        return self.__class__.__name__


# --- Categorias ---

class NotFoundError(WorkshopError):
    status_code = 404


class ConflictError(WorkshopError):
    status_code = 409


class InvalidInputError(WorkshopError):
    status_code = 400


class InsufficientStock(WorkshopError):
    status_code = 409


class ImmutableError(WorkshopError):
    status_code = 409


class PermissionDenied(WorkshopError):
    status_code = 403


class AssistantUnavailable(WorkshopError):
    status_code = 503


# --- Não encontrados ---

class AppointmentNotFound(NotFoundError):
    pass


class WorkOrderNotFound(NotFoundError):
    pass


class QuotationNotFound(NotFoundError):
    pass


class UnknownPart(NotFoundError):
    pass


class LaborNotFound(NotFoundError):
    pass


class ClientNotFound(NotFoundError):
    pass


class UserNotFound(NotFoundError):
    pass


# --- Conflitos ---

class DuplicateCode(ConflictError):
    pass


class DuplicateWorkOrder(ConflictError):
    pass


class SchedulingConflict(ConflictError):
    pass


class ActiveAppointmentExists(ConflictError):
    pass


class AppointmentNotAccepted(ConflictError):
    pass


class InvalidTransition(ConflictError):
    pass


# --- Entrada inválida ---

class MissingClient(InvalidInputError):
    pass


class EmptyQuotation(InvalidInputError):
    pass


# --- Documentos congelados ---

class ProformaImmutable(ImmutableError):
    pass


class AlreadyProforma(ImmutableError):
    pass
