# common/protocol.py
import json
import socket


class ProtocolError(ValueError):
    """Línea recibida que no es un mensaje JSON válido."""


def make_message(msg_type: str, payload: dict) -> bytes:
    envelope = {"type": msg_type, "payload": payload}
    return (json.dumps(envelope, separators=(",", ":")) + "\n").encode()


def parse_message(raw_line: bytes) -> dict:
    """
    Decodifica una línea '\\n'-terminada. Exige un objeto JSON con 'type'
    (str) y 'payload' opcional (dict).
    """
    try:
        msg = json.loads(raw_line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"JSON inválido: {e}") from e
    if not isinstance(msg, dict):
        raise ProtocolError("se esperaba un objeto JSON")
    if not isinstance(msg.get("type"), str):
        raise ProtocolError("'type' requerido")
    payload = msg.get("payload")
    if payload is not None and not isinstance(payload, dict):
        raise ProtocolError("'payload' debe ser un objeto")
    return msg


def encode_reply(reply: dict) -> bytes:
    return (json.dumps(reply, ensure_ascii=False) + "\n").encode("utf-8")


def send_line(sock: socket.socket, data: bytes):
    sock.sendall(data)


def recv_line(sock: socket.socket, max_bytes: int = 8192) -> bytes:
    """
    Lee hasta '\\n' (incluido). Devuelve b"" si el par cerró la conexión.
    Si la línea supera max_bytes se descarta el resto y se lanza ProtocolError.
    """
    chunks = []
    size = 0
    while True:
        b = sock.recv(1)
        if not b:
            break
        if b == b"\n":
            chunks.append(b)
            break
        size += 1
        if size > max_bytes:
            # consumir hasta fin de línea para no desincronizar el stream
            while b and b != b"\n":
                b = sock.recv(1)
            raise ProtocolError(f"línea demasiado larga (>{max_bytes} bytes)")
        chunks.append(b)
    return b"".join(chunks)
