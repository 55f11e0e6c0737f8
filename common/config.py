# common/config.py
import os
from pathlib import Path

from dotenv import load_dotenv

# Cargar .env lo antes posible (sin pisar variables ya presentes)
load_dotenv(override=False)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} debe ser un entero (valor: {raw!r})") from None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} debe ser numérico (valor: {raw!r})") from None


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise RuntimeError(f"{name} debe ser booleano (valor: {raw!r})")


# -------------------------------------------------
# Entorno / Base de datos
# -------------------------------------------------
ENV = os.getenv("ENV", "dev")

# Por defecto, base en ./data/lockout.db
DEFAULT_DB_URL = "sqlite:///data/lockout.db"
DB_URL = os.getenv("DB_URL", DEFAULT_DB_URL)


def db_path_from_url(url: str) -> str:
    prefix = "sqlite:///"
    return url[len(prefix) :] if url.startswith(prefix) else url


# Si el usuario define DB_PATH en .env, tiene prioridad.
DB_PATH = os.getenv("DB_PATH") or db_path_from_url(DB_URL)

# Normaliza la ruta y crea la carpeta si hace falta (para SQLite local)
DB_PATH = str(Path(DB_PATH))
db_dir = Path(DB_PATH).parent
if str(db_dir) not in ("", "."):
    db_dir.mkdir(parents=True, exist_ok=True)

# 'sqlite' (persistente) o 'memory' (solo proceso actual, útil en dev)
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "sqlite").strip().lower()
if LEDGER_BACKEND not in ("sqlite", "memory"):
    raise RuntimeError(f"LEDGER_BACKEND desconocido: {LEDGER_BACKEND!r}")

# Tiempo máximo esperando el almacén (lock por clave o lock de SQLite)
STORE_TIMEOUT_SECONDS = _float_env("STORE_TIMEOUT_SECONDS", 5.0)

# Cada cuánto se purgan ledgers inactivos (y sus locks en memoria)
PURGE_INTERVAL_SECONDS = _float_env("PURGE_INTERVAL_SECONDS", 300.0)

# -------------------------------------------------
# Servidor / logs
# -------------------------------------------------
SERVER_HOST = os.getenv("SERVER_HOST", "127.0.0.1")
SERVER_PORT = _int_env("SERVER_PORT", 5050)
MAX_LINE_BYTES = _int_env("MAX_LINE_BYTES", 8192)

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

SEED_DEMO_USER = _bool_env("SEED_DEMO_USER", ENV == "dev")

# -------------------------------------------------
# Políticas de bloqueo (usuario / origen)
#   usuario: 5 fallos en 5 min -> suspensión 15 min
#   origen:  20 fallos en 5 min -> bloqueo 15 min
# -------------------------------------------------
USER_MAX_ATTEMPTS = _int_env("USER_MAX_ATTEMPTS", 5)
USER_WINDOW_SECONDS = _float_env("USER_WINDOW_SECONDS", 5 * 60)
USER_LOCKOUT_SECONDS = _float_env("USER_LOCKOUT_SECONDS", 15 * 60)

ORIGIN_MAX_ATTEMPTS = _int_env("ORIGIN_MAX_ATTEMPTS", 20)
ORIGIN_WINDOW_SECONDS = _float_env("ORIGIN_WINDOW_SECONDS", 5 * 60)
ORIGIN_LOCKOUT_SECONDS = _float_env("ORIGIN_LOCKOUT_SECONDS", 15 * 60)

# Registrar fallos contra emails que no existen (paridad con el servicio
# original). Con False solo cuenta el origen para usuarios desconocidos.
RECORD_UNKNOWN_USERS = _bool_env("RECORD_UNKNOWN_USERS", True)
