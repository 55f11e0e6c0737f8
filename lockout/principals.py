# lockout/principals.py
import ipaddress
from enum import Enum

from lockout.errors import InvalidPrincipalKey


class PrincipalKind(str, Enum):
    """Espacio de claves de un principal: 'user:<email>' u 'origin:<ip>'."""

    USER = "user"
    ORIGIN = "origin"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_origin(address: str) -> str:
    """
    Forma canónica de una IP ('::ffff:1.2.3.4' -> '1.2.3.4'). Si no parsea
    como IP se conserva tal cual (p.ej. 'unknown' o un socket unix).
    """
    raw = address.strip()
    try:
        ip = ipaddress.ip_address(raw)
    except ValueError:
        return raw
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        return str(ip.ipv4_mapped)
    return str(ip)


def principal_key(kind: PrincipalKind, identity: str) -> str:
    if not isinstance(identity, str):
        raise InvalidPrincipalKey(f"identidad {kind.value} debe ser str: {identity!r}")
    if kind is PrincipalKind.USER:
        value = normalize_email(identity)
    else:
        value = normalize_origin(identity)
    if not value or any(c.isspace() for c in value):
        raise InvalidPrincipalKey(f"identidad {kind.value} inválida: {identity!r}")
    return f"{kind.value}:{value}"
