# lockout/store.py
"""
Contrato del almacén de ledgers y backend en memoria.

Cada operación del motor es un read-modify-write sobre el ledger de UNA
clave. El almacén garantiza que ese tramo está serializado por clave
(`update`), de modo que dos fallos concurrentes sobre el mismo principal
nunca se pisan. Claves distintas no comparten lock.
"""
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from lockout.errors import StoreUnavailable
from lockout.ledger import AttemptLedger, empty_ledger, is_idle

Mutation = Callable[[AttemptLedger], AttemptLedger]


class PrincipalStore(ABC):
    @abstractmethod
    def load(self, key: str) -> Optional[AttemptLedger]:
        """Ledger guardado para 'key' o None si no existe."""

    @abstractmethod
    def save(self, key: str, ledger: AttemptLedger) -> None:
        """Sobrescribe el ledger de 'key'."""

    @abstractmethod
    def update(self, key: str, mutate: Mutation) -> Tuple[AttemptLedger, AttemptLedger]:
        """
        Carga (ausente -> ledger vacío), aplica 'mutate' y persiste el
        resultado si difiere, todo de forma atómica para 'key'.
        Devuelve (antes, después). 'mutate' debe ser pura: un backend
        puede invocarla más de una vez (p.ej. tras releer bajo lock).
        """


class MemoryPrincipalStore(PrincipalStore):
    """
    Ledgers en un dict del proceso, un threading.Lock por clave.
    El lock del registro solo protege el alta y baja de locks por clave.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._ledgers: Dict[str, AttemptLedger] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def _acquire(self, key: str) -> threading.Lock:
        deadline = time.monotonic() + self.timeout
        while True:
            lock = self._lock_for(key)
            if not lock.acquire(timeout=max(0.0, deadline - time.monotonic())):
                raise StoreUnavailable(f"timeout esperando el lock de {key!r}")
            with self._registry_lock:
                if self._key_locks.get(key) is lock:
                    return lock
            # purge_idle retiró este lock mientras esperábamos: reintentar
            lock.release()

    def lock_count(self) -> int:
        with self._registry_lock:
            return len(self._key_locks)

    def load(self, key: str) -> Optional[AttemptLedger]:
        return self._ledgers.get(key)

    def save(self, key: str, ledger: AttemptLedger) -> None:
        lock = self._acquire(key)
        try:
            self._ledgers[key] = ledger
        finally:
            lock.release()

    def update(self, key: str, mutate: Mutation) -> Tuple[AttemptLedger, AttemptLedger]:
        lock = self._acquire(key)
        try:
            before = self._ledgers.get(key) or empty_ledger(key)
            after = mutate(before)
            if after != before:
                self._ledgers[key] = after
            return before, after
        finally:
            lock.release()

    def purge_idle(self, window: float, now: Optional[float] = None) -> int:
        """
        Borra ledgers equivalentes a 'ausente' y el lock de su clave
        (también claves que solo se consultaron). Devuelve cuántos ledgers.
        """
        now = time.time() if now is None else now
        removed = 0
        with self._registry_lock:
            keys = list(self._key_locks)
        for key in keys:
            lock = self._acquire(key)
            try:
                ledger = self._ledgers.get(key)
                if ledger is not None and not is_idle(ledger, window, now):
                    continue
                if ledger is not None:
                    del self._ledgers[key]
                    removed += 1
                with self._registry_lock:
                    del self._key_locks[key]
            finally:
                lock.release()
        return removed
