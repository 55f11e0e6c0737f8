# server/persistence.py
from __future__ import annotations

import json
import sqlite3
import time
from typing import Optional, Tuple

import bcrypt

from common.config import DB_PATH, STORE_TIMEOUT_SECONDS
from common.logging_setup import get_logger
from lockout.errors import StoreUnavailable, VerifierUnavailable
from lockout.gateway import Verification
from lockout.ledger import AttemptLedger, empty_ledger, is_idle
from lockout.principals import normalize_email
from lockout.store import Mutation, PrincipalStore

log = get_logger("server.persistence")

# ---------------------------------------------------------------------------
# Utilidad: conexión por operación (thread-safe para sqlite3 en modo básico)
# ---------------------------------------------------------------------------


def get_conn(
    db_path: Optional[str] = None, isolation_level: Optional[str] = ""
) -> sqlite3.Connection:
    con = sqlite3.connect(
        db_path or DB_PATH,
        timeout=STORE_TIMEOUT_SECONDS,
        isolation_level=isolation_level,
    )
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON;")
    # espera hasta STORE_TIMEOUT_SECONDS si otro escritor tiene el lock
    con.execute(f"PRAGMA busy_timeout = {int(STORE_TIMEOUT_SECONDS * 1000)};")
    return con


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

CREATE_USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    email TEXT PRIMARY KEY,
    password_hash BLOB NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""

# Un ledger por principal ('user:<email>' u 'origin:<ip>').
# failures: lista JSON de instantes (epoch s), orden de inserción.
CREATE_LEDGERS_TABLE = """
CREATE TABLE IF NOT EXISTS attempt_ledgers (
    principal_key TEXT PRIMARY KEY,
    failures TEXT NOT NULL DEFAULT '[]',
    locked_until REAL,
    updated_at REAL NOT NULL
);
"""

CREATE_IDX_LEDGERS_LOCKED = """
CREATE INDEX IF NOT EXISTS idx_ledgers_locked_until
ON attempt_ledgers(locked_until);
"""


# ---------------------------------------------------------------------------
# Inicialización y datos de ejemplo
# ---------------------------------------------------------------------------


def init_db(db_path: Optional[str] = None) -> None:
    con = get_conn(db_path)
    try:
        cur = con.cursor()
        # Modo WAL: lectores no bloquean al escritor del ledger
        cur.execute("PRAGMA journal_mode = WAL;")
        cur.execute("PRAGMA synchronous = NORMAL;")

        cur.execute(CREATE_USERS_TABLE)
        cur.execute(CREATE_LEDGERS_TABLE)
        cur.execute(CREATE_IDX_LEDGERS_LOCKED)

        con.commit()
    finally:
        con.close()


def seed_users() -> int:
    """
    Inserta 1 usuario demo si la tabla está vacía (idempotente).
    """
    con = get_conn()
    try:
        total = con.execute("SELECT COUNT(*) FROM users").fetchone()[0]
    finally:
        con.close()
    if total:
        return 0
    return 1 if add_user("demo@example.com", "demo1234") else 0


# ---------------------------------------------------------------------------
# Usuarios
# ---------------------------------------------------------------------------

# bcrypt solo usa los primeros 72 bytes (y bcrypt>=5 lanza ValueError si hay
# más): se recorta igual al hashear y al comparar.
BCRYPT_MAX_BYTES = 72


def _bcrypt_input(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def add_user(email: str, password_plain: str) -> bool:
    """
    Crea un usuario con contraseña hasheada. Devuelve True si se insertó,
    False si ya existía. El email se guarda normalizado (minúsculas).
    """
    email = normalize_email(email)
    pw_hash = bcrypt.hashpw(_bcrypt_input(password_plain), bcrypt.gensalt())
    con = get_conn()
    try:
        try:
            con.execute(
                "INSERT INTO users (email, password_hash) VALUES (?, ?)",
                (email, pw_hash),
            )
            con.commit()
            return True
        except sqlite3.IntegrityError:
            # clave primaria (email) duplicada
            return False
    finally:
        con.close()


def get_user(email: str) -> Optional[sqlite3.Row]:
    con = get_conn()
    try:
        return con.execute(
            "SELECT email, password_hash, created_at FROM users WHERE email = ?",
            (normalize_email(email),),
        ).fetchone()
    finally:
        con.close()


def _hash_bytes(stored) -> bytes:
    # Tolera password_hash como BLOB (bytes), TEXT (str) o memoryview
    if isinstance(stored, memoryview):
        return stored.tobytes()
    if isinstance(stored, bytes):
        return stored
    if isinstance(stored, str):
        return stored.encode("utf-8", "ignore")
    return bytes(stored)


class BcryptCredentialVerifier:
    """
    Verifica contra los hashes bcrypt de la tabla users.
    Errores de BD -> VerifierUnavailable (nunca "credenciales válidas").
    """

    def __init__(self):
        self._dummy_hash: Optional[bytes] = None

    def _burn(self, secret: bytes) -> None:
        # Coste similar para usuarios inexistentes (no revelar si existen)
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(b"dummy-password", bcrypt.gensalt())
        bcrypt.checkpw(secret, self._dummy_hash)

    def verify(self, email: str, secret: str) -> Verification:
        try:
            row = get_user(email)
        except sqlite3.Error as e:
            raise VerifierUnavailable(f"no se pudo leer el usuario: {e}") from e

        candidate = _bcrypt_input(secret)
        if row is None:
            self._burn(candidate)
            return Verification(ok=False, exists=False)

        try:
            ok = bcrypt.checkpw(candidate, _hash_bytes(row["password_hash"]))
        except (ValueError, TypeError) as e:
            log.error("Hash corrupto para %s: %s", row["email"], e)
            ok = False
        return Verification(ok=ok, exists=True)


# ---------------------------------------------------------------------------
# Ledgers de intentos (PrincipalStore sobre SQLite)
# ---------------------------------------------------------------------------


def _row_to_ledger(key: str, row: sqlite3.Row) -> AttemptLedger:
    failures = tuple(float(t) for t in json.loads(row["failures"] or "[]"))
    return AttemptLedger(key, failures, row["locked_until"])


class SqliteLedgerStore(PrincipalStore):
    """
    Cada update que cambia el ledger es una transacción BEGIN IMMEDIATE:
    SQLite toma el lock de escritura antes de releer, así que dos
    read-modify-write concurrentes sobre el mismo ledger se ejecutan en
    serie y ninguno se pierde. Los updates que no cambian nada (la mayoría
    de checks) se quedan en una lectura y no esperan al escritor.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def _conn(self) -> sqlite3.Connection:
        # autocommit: las transacciones se abren a mano
        return get_conn(self.db_path, isolation_level=None)

    @staticmethod
    def _select(con: sqlite3.Connection, key: str) -> Optional[AttemptLedger]:
        row = con.execute(
            "SELECT failures, locked_until FROM attempt_ledgers WHERE principal_key = ?",
            (key,),
        ).fetchone()
        return _row_to_ledger(key, row) if row else None

    @staticmethod
    def _upsert(con: sqlite3.Connection, key: str, ledger: AttemptLedger) -> None:
        con.execute(
            """
            INSERT INTO attempt_ledgers (principal_key, failures, locked_until, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(principal_key) DO UPDATE SET
                failures = excluded.failures,
                locked_until = excluded.locked_until,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(list(ledger.failures)), ledger.locked_until, time.time()),
        )

    def load(self, key: str) -> Optional[AttemptLedger]:
        try:
            con = self._conn()
            try:
                return self._select(con, key)
            finally:
                con.close()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"no se pudo leer el ledger {key!r}: {e}") from e

    def save(self, key: str, ledger: AttemptLedger) -> None:
        try:
            con = self._conn()
            try:
                self._upsert(con, key, ledger)
            finally:
                con.close()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"no se pudo guardar el ledger {key!r}: {e}") from e

    def update(self, key: str, mutate: Mutation) -> Tuple[AttemptLedger, AttemptLedger]:
        try:
            con = self._conn()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"BD no disponible: {e}") from e
        try:
            # Lectura sin lock de escritura: si no hay nada que guardar
            # (check sin expiración), no se bloquea a otros escritores.
            before = self._select(con, key) or empty_ledger(key)
            after = mutate(before)
            if after == before:
                return before, after

            con.execute("BEGIN IMMEDIATE")
            try:
                # relectura bajo el lock: otro hilo pudo escribir entretanto
                before = self._select(con, key) or empty_ledger(key)
                after = mutate(before)
                if after != before:
                    self._upsert(con, key, after)
                con.execute("COMMIT")
            except BaseException:
                con.execute("ROLLBACK")
                raise
            return before, after
        except sqlite3.Error as e:
            raise StoreUnavailable(f"no se pudo actualizar el ledger {key!r}: {e}") from e
        finally:
            con.close()

    def purge_idle(self, window: float, now: Optional[float] = None) -> int:
        """
        Borra ledgers sin bloqueo vigente ni fallos dentro de 'window'
        (ausente y vacío son equivalentes). Devuelve cuántos se borraron.
        """
        now = time.time() if now is None else now
        removed = 0
        try:
            con = self._conn()
            try:
                con.execute("BEGIN IMMEDIATE")
                try:
                    rows = con.execute(
                        "SELECT principal_key, failures, locked_until FROM attempt_ledgers"
                    ).fetchall()
                    for row in rows:
                        key = row["principal_key"]
                        if is_idle(_row_to_ledger(key, row), window, now):
                            con.execute(
                                "DELETE FROM attempt_ledgers WHERE principal_key = ?",
                                (key,),
                            )
                            removed += 1
                    con.execute("COMMIT")
                except BaseException:
                    con.execute("ROLLBACK")
                    raise
            finally:
                con.close()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"no se pudo purgar ledgers: {e}") from e
        return removed
