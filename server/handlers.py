# server/handlers.py
from __future__ import annotations

from typing import Optional

from common import config
from common.logging_setup import get_logger
from lockout.engine import LockoutEngine
from lockout.errors import LockoutError
from lockout.gateway import AuthenticationGateway, AuthOutcome
from lockout.policy import RateLimitPolicy
from lockout.principals import PrincipalKind, normalize_email
from lockout.store import MemoryPrincipalStore, PrincipalStore
from server.persistence import BcryptCredentialVerifier, SqliteLedgerStore, add_user
from server.validators import (
    is_valid_email,
    validate_login_input,
    validate_register_input,
)

log = get_logger("server.handlers")

# Códigos de estado (semántica HTTP) en las respuestas
OK, CREATED = 200, 201
BAD_REQUEST, UNAUTHORIZED, FORBIDDEN, TOO_MANY_REQUESTS = 400, 401, 403, 429
SERVER_ERROR = 500

# ---------------------------------------------------------------------
# Gateway de autenticación (se construye perezosamente desde config)
# ---------------------------------------------------------------------

_gateway: Optional[AuthenticationGateway] = None


def build_gateway(store: Optional[PrincipalStore] = None, clock=None) -> AuthenticationGateway:
    if store is None:
        if config.LEDGER_BACKEND == "memory":
            store = MemoryPrincipalStore(timeout=config.STORE_TIMEOUT_SECONDS)
        else:
            store = SqliteLedgerStore()
    user_policy = RateLimitPolicy(
        config.USER_MAX_ATTEMPTS, config.USER_WINDOW_SECONDS, config.USER_LOCKOUT_SECONDS
    )
    origin_policy = RateLimitPolicy(
        config.ORIGIN_MAX_ATTEMPTS,
        config.ORIGIN_WINDOW_SECONDS,
        config.ORIGIN_LOCKOUT_SECONDS,
    )
    extra = {"clock": clock} if clock is not None else {}
    return AuthenticationGateway(
        LockoutEngine(store, user_policy, PrincipalKind.USER, **extra),
        LockoutEngine(store, origin_policy, PrincipalKind.ORIGIN, **extra),
        BcryptCredentialVerifier(),
        record_unknown_users=config.RECORD_UNKNOWN_USERS,
    )


def configure(gateway: Optional[AuthenticationGateway]) -> None:
    """Sustituye el gateway global (tests / arranque del servidor)."""
    global _gateway
    _gateway = gateway


def get_gateway() -> AuthenticationGateway:
    global _gateway
    if _gateway is None:
        _gateway = build_gateway()
    return _gateway


# ---------------------------------------------------------------------
# Helpers comunes
# ---------------------------------------------------------------------


def _reply(ok: bool, code: int, message: str, **extra) -> dict:
    return {"ok": ok, "code": code, "message": message, **extra}


def _internal_error(what: str) -> dict:
    return _reply(False, SERVER_ERROR, f"error interno {what}")


# ---------------------------------------------------------------------
# Handlers de operaciones
# ---------------------------------------------------------------------


def handle_register(msg: dict, *, client_ip: Optional[str] = None) -> dict:
    payload = msg.get("payload") or {}
    email = payload.get("email")
    password = payload.get("password")
    err = validate_register_input(email, password)
    if err:
        return _reply(False, BAD_REQUEST, err)

    email = normalize_email(email)
    try:
        created = add_user(email, password)
    except Exception as e:
        log.exception("Error registrando usuario %s desde %s: %s", email, client_ip, e)
        return _internal_error("registrando")

    if not created:
        return _reply(False, BAD_REQUEST, "usuario ya existe")

    log.info("Usuario %s registrado desde %s", email, client_ip)
    return _reply(True, CREATED, "usuario creado", data={"email": email})


def handle_login(msg: dict, *, client_ip: Optional[str] = None) -> dict:
    payload = msg.get("payload") or {}
    email = payload.get("email")
    password = payload.get("password")
    err = validate_login_input(email, password)
    if err:
        return _reply(False, BAD_REQUEST, err)

    email = normalize_email(email)
    ip = client_ip or "unknown"
    try:
        result = get_gateway().authenticate(email, ip, password)
    except LockoutError as e:
        # Nunca adivinar "bloqueado" u "ok" si el backend falla
        log.exception("Error autenticando %s desde %s: %s", email, ip, e)
        return _internal_error("autenticando")

    if result.outcome is AuthOutcome.ORIGIN_BLOCKED:
        return _reply(
            False,
            TOO_MANY_REQUESTS,
            "IP bloqueada temporalmente por exceso de intentos fallidos",
            remainingTime=result.remaining_seconds,
        )
    if result.outcome is AuthOutcome.USER_SUSPENDED:
        return _reply(
            False,
            FORBIDDEN,
            "cuenta suspendida temporalmente por demasiados intentos fallidos",
            remainingTime=result.remaining_seconds,
        )
    if result.outcome is AuthOutcome.INVALID_CREDENTIALS:
        return _reply(False, UNAUTHORIZED, "email o contraseña incorrectos")

    log.info("Login OK para %s desde %s", email, ip)
    return _reply(True, OK, "login ok", data={"email": email})


def handle_status(msg: dict, *, client_ip: Optional[str] = None) -> dict:
    payload = msg.get("payload") or {}
    email = payload.get("email")
    if email and not is_valid_email(email):
        return _reply(False, BAD_REQUEST, "formato de email inválido")
    email = normalize_email(email) if email else None
    try:
        data = get_gateway().status(client_ip or "unknown", email)
    except LockoutError as e:
        log.exception("Error consultando estado desde %s: %s", client_ip, e)
        return _internal_error("consultando estado")
    return _reply(True, OK, "estado", data=data)


def handle_health(msg: dict, *, client_ip: Optional[str] = None) -> dict:
    return _reply(True, OK, "servidor en marcha")


# ---------------------------------------------------------------------
# Dispatcher principal
# ---------------------------------------------------------------------


def handle_message(msg: dict, *, client_ip: Optional[str] = None) -> dict:
    """
    Enruta por msg['type'] y delega en el handler correspondiente.
    """
    t = (msg.get("type") or "").lower()

    if t == "register":
        return handle_register(msg, client_ip=client_ip)

    elif t == "login":
        return handle_login(msg, client_ip=client_ip)

    elif t == "status":
        return handle_status(msg, client_ip=client_ip)

    elif t == "health":
        return handle_health(msg, client_ip=client_ip)

    else:
        return _reply(False, BAD_REQUEST, f"tipo desconocido: {t}")
