# server/validators.py
import re
from typing import Optional

MIN_PASSWORD_LENGTH = 6

# Simplificación de RFC 5322: local@dominio con al menos un punto (TLD)
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)


def is_valid_email(email) -> bool:
    if not email or not isinstance(email, str):
        return False
    if len(email) > 254 or ".." in email:
        return False
    if not _EMAIL_RE.match(email):
        return False
    local, _, domain = email.partition("@")
    if len(local) > 64 or local.startswith(".") or local.endswith("."):
        return False
    return "." in domain


def is_valid_password(password) -> bool:
    return isinstance(password, str) and len(password) >= MIN_PASSWORD_LENGTH


def validate_login_input(email, password) -> Optional[str]:
    """Devuelve mensaje de error o None si está OK."""
    if not email or not password:
        return "email y password requeridos"
    if not isinstance(password, str):
        return "password debe ser string"
    if not is_valid_email(email):
        return "formato de email inválido"
    return None


def validate_register_input(email, password) -> Optional[str]:
    err = validate_login_input(email, password)
    if err:
        return err
    if not is_valid_password(password):
        return f"la contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres"
    return None
