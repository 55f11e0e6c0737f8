# lockout/gateway.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from common.logging_setup import get_logger
from lockout.engine import LockoutEngine

log = get_logger("lockout.gateway")


@dataclass(frozen=True)
class Verification:
    ok: bool
    exists: bool


class CredentialVerifier(Protocol):
    def verify(self, email: str, secret: str) -> Verification:
        """Puede lanzar VerifierUnavailable si el backend falla."""
        ...


class AuthOutcome(str, Enum):
    SUCCESS = "success"
    INVALID_CREDENTIALS = "invalid_credentials"
    USER_SUSPENDED = "user_suspended"
    ORIGIN_BLOCKED = "origin_blocked"


@dataclass(frozen=True)
class AuthResult:
    outcome: AuthOutcome
    remaining_seconds: int = 0
    # tras un fallo: si el usuario / origen han quedado bloqueados
    user_locked: bool = False
    origin_locked: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.SUCCESS


class AuthenticationGateway:
    """
    Orquesta un intento de login contra los dos niveles de bloqueo.

    Orden fijo: bloqueo de origen -> suspensión de usuario -> verificación
    de credenciales. Un origen bloqueado no llega a comparar contraseñas y
    un usuario suspendido tampoco.

    Fallo (usuario inexistente o contraseña errónea, indistinguibles para
    el cliente): cuenta en el ledger del origen y en el del usuario.
    Éxito: limpia solo el ledger del usuario; el historial del origen se
    conserva.
    """

    def __init__(
        self,
        user_engine: LockoutEngine,
        origin_engine: LockoutEngine,
        verifier: CredentialVerifier,
        record_unknown_users: bool = True,
    ):
        self.user_engine = user_engine
        self.origin_engine = origin_engine
        self.verifier = verifier
        self.record_unknown_users = record_unknown_users

    def authenticate(self, email: str, origin: str, secret: str) -> AuthResult:
        origin_status = self.origin_engine.check_status(origin)
        if origin_status.blocked:
            log.warning(
                "Login rechazado: origen %s bloqueado (%ss)",
                origin,
                origin_status.remaining_seconds,
            )
            return AuthResult(
                AuthOutcome.ORIGIN_BLOCKED,
                remaining_seconds=origin_status.remaining_seconds,
                origin_locked=True,
            )

        user_status = self.user_engine.check_status(email)
        if user_status.blocked:
            log.warning(
                "Login rechazado: usuario %s suspendido (%ss) desde %s",
                email,
                user_status.remaining_seconds,
                origin,
            )
            return AuthResult(
                AuthOutcome.USER_SUSPENDED,
                remaining_seconds=user_status.remaining_seconds,
                user_locked=True,
            )

        result = self.verifier.verify(email, secret)
        if result.ok:
            self.user_engine.clear(email)
            return AuthResult(AuthOutcome.SUCCESS)

        # el origen registra siempre, y primero
        origin_locked = self.origin_engine.record_failure(origin).locked
        user_locked = False
        if result.exists or self.record_unknown_users:
            user_locked = self.user_engine.record_failure(email).locked
        log.info(
            "Login KO para %s desde %s (usuario_bloqueado=%s, origen_bloqueado=%s)",
            email,
            origin,
            user_locked,
            origin_locked,
        )
        return AuthResult(
            AuthOutcome.INVALID_CREDENTIALS,
            user_locked=user_locked,
            origin_locked=origin_locked,
        )

    def status(self, origin: str, email: Optional[str] = None) -> dict:
        """Estado de bloqueo del origen y, si se indica, del usuario."""
        origin_status = self.origin_engine.check_status(origin)
        user = {"suspended": False, "remainingTime": 0}
        if email:
            user_status = self.user_engine.check_status(email)
            user = {
                "suspended": user_status.blocked,
                "remainingTime": user_status.remaining_seconds,
            }
        return {
            "ip": {
                "blocked": origin_status.blocked,
                "remainingTime": origin_status.remaining_seconds,
            },
            "user": user,
        }
