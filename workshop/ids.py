import itertools
import threading
import time
from typing import Protocol


class IdProvider(Protocol):
    def next_int(self) -> int: ...
    def next_code(self, prefix: str) -> str: ...


class TimeIdProvider:
    """
    Ids derivados do relógio (milissegundos), mas estritamente crescentes.
    Duas criações no mesmo milissegundo recebem ids diferentes.
    """

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def next_int(self) -> int:
        with self._lock:
            candidate = time.time_ns() // 1_000_000
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return candidate

    def next_code(self, prefix: str) -> str:
        return f"{prefix}-{self.next_int()}"


class SequentialIdProvider:
    """Contador simples, determinístico. Usado nos testes."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_int(self) -> int:
        with self._lock:
            return next(self._counter)

    def next_code(self, prefix: str) -> str:
        return f"{prefix}-{self.next_int():04d}"


default_ids = TimeIdProvider()


def get_id_provider() -> IdProvider:
    return default_ids
