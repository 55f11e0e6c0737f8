# lockout/errors.py
class LockoutError(Exception):
    """Base de los errores del motor de bloqueo."""


class StoreUnavailable(LockoutError):
    """
    El almacén de ledgers no respondió (timeout, BD bloqueada, E/S).
    Transitorio: el llamador reintenta o responde error de servidor, nunca
    lo interpreta como "no bloqueado".
    """


class InvalidPrincipalKey(LockoutError, ValueError):
    """Clave de principal vacía o mal formada (error de programación)."""


class VerifierUnavailable(LockoutError):
    """El verificador de credenciales externo falló de forma transitoria."""
