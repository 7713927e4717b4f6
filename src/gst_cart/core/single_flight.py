"""Fila single-flight: uma intenção por vez, estritamente na ordem de submissão.

Cada chamada pega uma senha (ticket); só executa quando for a senha atendida.
Substitui o lock local simples quando o servidor Flask roda com threads.
"""
from __future__ import annotations
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

T = TypeVar("T")

class SingleFlight:
    def __init__(self):
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0

    @property
    def pending(self) -> int:
        """Intenções aguardando ou em execução."""
        with self._cond:
            return self._next_ticket - self._serving

    @contextmanager
    def turn(self) -> Iterator[int]:
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                self._cond.wait()
        try:
            yield ticket
        finally:
            with self._cond:
                self._serving += 1
                self._cond.notify_all()

    def run(self, fn: Callable[[], T]) -> T:
        with self.turn():
            return fn()
