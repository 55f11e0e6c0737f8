# lockout/engine.py
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

from common.logging_setup import get_logger
from lockout import ledger as lg
from lockout.policy import RateLimitPolicy
from lockout.principals import PrincipalKind, principal_key
from lockout.store import PrincipalStore

log = get_logger("lockout.engine")


@dataclass(frozen=True)
class LockoutStatus:
    blocked: bool
    remaining_seconds: int = 0


@dataclass(frozen=True)
class FailureOutcome:
    now_locked: bool  # este fallo activó el bloqueo
    locked: bool
    failures: int
    remaining_seconds: int = 0


class LockoutEngine:
    """
    Aplica una RateLimitPolicy a los ledgers de un tipo de principal.
    No guarda estado propio: cada operación es un único update atómico
    sobre el almacén, que es quien posee los ledgers.

    Los errores del almacén (StoreUnavailable) se propagan tal cual: un
    check fallido nunca equivale a "no bloqueado".
    """

    def __init__(
        self,
        store: PrincipalStore,
        policy: RateLimitPolicy,
        kind: PrincipalKind,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.policy = policy
        self.kind = kind
        self.clock = clock

    def key_for(self, identity: str) -> str:
        return principal_key(self.kind, identity)

    def check_status(self, identity: str) -> LockoutStatus:
        key = self.key_for(identity)
        result = {}

        def _evaluate(current: lg.AttemptLedger) -> lg.AttemptLedger:
            ev = lg.evaluate(current, self.policy, self.clock())
            result["ev"] = ev
            return ev.ledger

        before, _ = self.store.update(key, _evaluate)
        ev = result["ev"]
        if not ev.locked and before.locked_until is not None:
            log.info("Bloqueo expirado para %s, ledger reiniciado", key)
        if ev.locked:
            return LockoutStatus(True, math.ceil(ev.remaining))
        return LockoutStatus(False, 0)

    def record_failure(self, identity: str) -> FailureOutcome:
        key = self.key_for(identity)
        stamp = {}

        def _record(current: lg.AttemptLedger) -> lg.AttemptLedger:
            now = self.clock()
            stamp["now"] = now
            stamp["was_locked"] = lg.is_locked(current, now)
            return lg.record_failure(current, self.policy, now)

        _, after = self.store.update(key, _record)
        now = stamp["now"]
        locked = lg.is_locked(after, now)
        now_locked = locked and not stamp["was_locked"]
        if now_locked:
            log.warning(
                "%s bloqueado %ss tras %d fallos en %ss",
                key,
                int(self.policy.lockout_seconds),
                len(after.failures),
                int(self.policy.window_seconds),
            )
        return FailureOutcome(
            now_locked=now_locked,
            locked=locked,
            failures=len(after.failures),
            remaining_seconds=lg.remaining_seconds(after, now),
        )

    def clear(self, identity: str) -> None:
        key = self.key_for(identity)
        self.store.update(key, lambda current: lg.clear(key))
