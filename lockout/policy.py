# lockout/policy.py
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitPolicy:
    """
    Umbrales inmutables de una política de bloqueo.
    N fallos dentro de la ventana -> bloqueo durante lockout_seconds.
    """

    max_attempts: int
    window_seconds: float
    lockout_seconds: float

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts debe ser >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds debe ser > 0")
        if self.lockout_seconds <= 0:
            raise ValueError("lockout_seconds debe ser > 0")


USER_POLICY = RateLimitPolicy(max_attempts=5, window_seconds=300, lockout_seconds=900)
ORIGIN_POLICY = RateLimitPolicy(max_attempts=20, window_seconds=300, lockout_seconds=900)
