# src/planning/context.py

"""
context.py
==========

Contexto de ejecución del cliente del sistema de planificación.

El API del TPS exige que ciertas escrituras se hagan en el hilo que
posee la sesión de cliente. Aquí ese hilo se modela con un executor de
un solo worker: todo lo que pase por XContext.invoke() corre en el
mismo hilo dedicado, en orden de llegada.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class XContext:
    _instance: Optional["XContext"] = None
    _lock = threading.Lock()

    def __init__(self, thread_name: str = "pq-client-context"):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name)

    @classmethod
    def instance(cls) -> "XContext":
        """Contexto global (se crea la primera vez que se pide)."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def invoke(self, fn: Callable[[], T]) -> T:
        """
        Ejecuta fn en el hilo del contexto y espera su resultado.
        Las excepciones de fn se relanzan en el hilo que llama.
        """
        return self._executor.submit(fn).result()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        with XContext._lock:
            if XContext._instance is self:
                XContext._instance = None
