# common/logging_setup.py
import logging
import os
from logging.handlers import RotatingFileHandler

from common.config import LOG_DIR, LOG_LEVEL

FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure(root: logging.Logger) -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    fmt = logging.Formatter(FORMAT)
    fh = RotatingFileHandler(
        os.path.join(LOG_DIR, "server.log"),
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    fh.setFormatter(fmt)
    root.addHandler(fh)
    # también a consola en dev
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)


def get_logger(name: str = "server") -> logging.Logger:
    """
    Devuelve el logger 'name'. Los handlers se cuelgan una sola vez del
    logger raíz del paquete ('server', 'lockout', ...) y los hijos propagan.
    """
    root = logging.getLogger(name.split(".", 1)[0])
    if not root.handlers:  # evitar duplicados en recargas
        _configure(root)
    return logging.getLogger(name)
