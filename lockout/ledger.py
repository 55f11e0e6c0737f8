# lockout/ledger.py
"""
Ledger de intentos fallidos por principal y helpers puros.

Instantes en segundos POSIX (float). Ninguna función muta su entrada:
todas devuelven un ledger nuevo, que el llamador persiste si cambió.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from lockout.policy import RateLimitPolicy


@dataclass(frozen=True)
class AttemptLedger:
    principal_key: str
    failures: Tuple[float, ...] = ()
    locked_until: Optional[float] = None


@dataclass(frozen=True)
class Evaluation:
    locked: bool
    remaining: float
    ledger: AttemptLedger


def empty_ledger(principal_key: str) -> AttemptLedger:
    return AttemptLedger(principal_key=principal_key)


def prune(ledger: AttemptLedger, window: float, now: float) -> AttemptLedger:
    """Conserva solo fallos estrictamente más nuevos que now - window."""
    limit = now - window
    kept = tuple(t for t in ledger.failures if t > limit)
    if len(kept) == len(ledger.failures):
        return ledger
    return replace(ledger, failures=kept)


def is_locked(ledger: AttemptLedger, now: float) -> bool:
    return ledger.locked_until is not None and now < ledger.locked_until


def remaining(ledger: AttemptLedger, now: float) -> float:
    if not is_locked(ledger, now):
        return 0.0
    return max(0.0, ledger.locked_until - now)


def remaining_seconds(ledger: AttemptLedger, now: float) -> int:
    # segundos enteros, redondeando hacia arriba
    return math.ceil(remaining(ledger, now))


def clear(principal_key: str) -> AttemptLedger:
    return empty_ledger(principal_key)


def _expire(ledger: AttemptLedger, now: float) -> AttemptLedger:
    # Expiración perezosa: bloqueo vencido -> fuera bloqueo y fallos antiguos
    if ledger.locked_until is not None and now >= ledger.locked_until:
        return clear(ledger.principal_key)
    return ledger


def evaluate(ledger: AttemptLedger, policy: RateLimitPolicy, now: float) -> Evaluation:
    """
    Estado actual del ledger. Si el bloqueo venció, el ledger devuelto viene
    reseteado; si no está bloqueado, viene podado. Con bloqueo activo los
    fallos no se tocan.
    """
    if is_locked(ledger, now):
        return Evaluation(True, remaining(ledger, now), ledger)
    current = prune(_expire(ledger, now), policy.window_seconds, now)
    return Evaluation(False, 0.0, current)


def record_failure(
    ledger: AttemptLedger, policy: RateLimitPolicy, now: float
) -> AttemptLedger:
    """
    Poda, añade 'now' y bloquea si se alcanza el umbral. Durante un bloqueo
    activo el fallo se ignora (el principal ya se rechaza antes).
    """
    if is_locked(ledger, now):
        return ledger
    current = prune(_expire(ledger, now), policy.window_seconds, now)
    failures = current.failures + (now,)
    if len(failures) >= policy.max_attempts:
        return replace(
            current, failures=failures, locked_until=now + policy.lockout_seconds
        )
    return replace(current, failures=failures)


def is_idle(ledger: AttemptLedger, window: float, now: float) -> bool:
    """Sin bloqueo vigente ni fallos recientes: equivale a no existir."""
    if is_locked(ledger, now):
        return False
    return not prune(ledger, window, now).failures
