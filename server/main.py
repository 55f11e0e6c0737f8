# server/main.py
import socket
import threading

from common.config import (
    MAX_LINE_BYTES,
    ORIGIN_WINDOW_SECONDS,
    PURGE_INTERVAL_SECONDS,
    SEED_DEMO_USER,
    SERVER_HOST,
    SERVER_PORT,
    USER_WINDOW_SECONDS,
)
from common.logging_setup import get_logger
from common.protocol import (
    ProtocolError,
    encode_reply,
    parse_message,
    recv_line,
    send_line,
)
from lockout.errors import StoreUnavailable
from lockout.store import MemoryPrincipalStore
from server.handlers import BAD_REQUEST, get_gateway, handle_message
from server.persistence import SqliteLedgerStore, init_db, seed_users

log = get_logger("server.main")


def handle_client(conn: socket.socket, addr):
    # El origen del intento es la IP del par TCP
    client_ip = addr[0]
    log.info("Cliente conectado: %s", addr)
    try:
        while True:
            try:
                raw_line = recv_line(conn, MAX_LINE_BYTES)  # bytes de una línea
                if not raw_line:
                    break
                msg = parse_message(raw_line)
            except ProtocolError as e:
                reply = {"ok": False, "code": BAD_REQUEST, "message": str(e)}
                send_line(conn, encode_reply(reply))
                continue

            reply = handle_message(msg, client_ip=client_ip)
            send_line(conn, encode_reply(reply))

    except OSError as e:
        log.warning("Conexión con %s interrumpida: %s", addr, e)
    except Exception as e:
        log.exception("Error con %s: %s", addr, e)
    finally:
        conn.close()
        log.info("Cliente desconectado: %s", addr)


def purge_once(store) -> int:
    """Purga ledgers inactivos de cualquier backend que lo soporte."""
    if not isinstance(store, (SqliteLedgerStore, MemoryPrincipalStore)):
        return 0
    purged = store.purge_idle(max(USER_WINDOW_SECONDS, ORIGIN_WINDOW_SECONDS))
    if purged:
        log.info("Ledgers inactivos purgados: %d", purged)
    return purged


def _purge_loop(store, stop: threading.Event) -> None:
    while not stop.wait(PURGE_INTERVAL_SECONDS):
        try:
            purge_once(store)
        except StoreUnavailable as e:
            log.warning("Purga de ledgers fallida (se reintenta): %s", e)


def prepare() -> threading.Event:
    init_db()
    if SEED_DEMO_USER and seed_users():
        log.info("Usuario demo creado")
    store = get_gateway().user_engine.store
    purge_once(store)
    stop = threading.Event()
    threading.Thread(target=_purge_loop, args=(store, stop), daemon=True).start()
    log.info("DB OK")
    return stop


def main():
    prepare()
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind((SERVER_HOST, SERVER_PORT))
        s.listen(256)

        log.info("Escuchando en %s:%s", SERVER_HOST, SERVER_PORT)

        while True:
            conn, addr = s.accept()
            threading.Thread(
                target=handle_client, args=(conn, addr), daemon=True
            ).start()


if __name__ == "__main__":
    main()
