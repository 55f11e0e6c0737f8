# test/test_handlers.py
import pytest

from lockout.engine import LockoutEngine
from lockout.gateway import AuthenticationGateway
from lockout.policy import USER_POLICY
from lockout.principals import PrincipalKind
from server import handlers
from server.persistence import BcryptCredentialVerifier, add_user
from test_engine import _BrokenStore

IP = "203.0.113.50"


@pytest.fixture
def gateway(tmp_db, memory_store, clock):
    gw = handlers.build_gateway(store=memory_store, clock=clock)
    handlers.configure(gw)
    yield gw
    handlers.configure(None)


def _msg(t, **payload):
    return {"type": t, "payload": payload}


def _login(email, password, ip=IP):
    return handlers.handle_message(_msg("login", email=email, password=password), client_ip=ip)


def test_register_flow(gateway):
    r = handlers.handle_message(_msg("register", email="New@Example.com", password="abcdef"))
    assert r["ok"] is True and r["code"] == 201
    assert r["data"] == {"email": "new@example.com"}

    dup = handlers.handle_message(_msg("register", email="new@example.com", password="abcdef"))
    assert dup["ok"] is False and dup["code"] == 400
    assert "existe" in dup["message"]


@pytest.mark.parametrize(
    "payload",
    [
        {"email": "not-an-email", "password": "abcdef"},
        {"email": "a@example.com", "password": "abc"},
        {"email": "a@example.com"},
        {},
    ],
)
def test_register_rejects_invalid_input(gateway, payload):
    r = handlers.handle_message({"type": "register", "payload": payload})
    assert r["ok"] is False and r["code"] == 400


def test_login_ok_ko_and_suspension(gateway):
    add_user("gina@example.com", "s3cret!")

    ok = _login("GINA@example.com", "s3cret!")
    assert ok["ok"] is True and ok["code"] == 200

    for _ in range(USER_POLICY.max_attempts):
        bad = _login("gina@example.com", "wrong-pass")
        assert bad["code"] == 401
        assert bad["message"] == "email o contraseña incorrectos"

    suspended = _login("gina@example.com", "s3cret!")
    assert suspended["ok"] is False and suspended["code"] == 403
    assert suspended["remainingTime"] == 15 * 60


def test_unknown_user_gets_same_reply_as_wrong_password(gateway):
    add_user("hank@example.com", "s3cret!")
    wrong = _login("hank@example.com", "nope")
    ghost = _login("ghost@example.com", "nope")
    assert wrong == ghost


def test_origin_block_returns_429(gateway, clock):
    for i in range(20):
        gateway.origin_engine.record_failure(IP)
    clock.advance(60)
    r = _login("ivy@example.com", "whatever")
    assert r["code"] == 429
    assert r["remainingTime"] == 14 * 60
    # otro origen no está afectado
    assert _login("ivy@example.com", "whatever", ip="203.0.113.51")["code"] == 401


def test_backend_error_is_generic_server_error(tmp_db, clock):
    store = _BrokenStore()
    handlers.configure(
        AuthenticationGateway(
            LockoutEngine(store, USER_POLICY, PrincipalKind.USER, clock=clock),
            LockoutEngine(store, USER_POLICY, PrincipalKind.ORIGIN, clock=clock),
            BcryptCredentialVerifier(),
        )
    )
    try:
        r = _login("jo@example.com", "whatever")
        assert r["ok"] is False and r["code"] == 500
        s = handlers.handle_message(_msg("status"), client_ip=IP)
        assert s["code"] == 500
    finally:
        handlers.configure(None)


def test_status_and_health(gateway):
    s = handlers.handle_message(_msg("status", email="kim@example.com"), client_ip=IP)
    assert s["ok"] is True
    assert s["data"]["ip"] == {"blocked": False, "remainingTime": 0}
    assert s["data"]["user"] == {"suspended": False, "remainingTime": 0}

    assert handlers.handle_message(_msg("status", email="bad"), client_ip=IP)["code"] == 400
    assert handlers.handle_message({"type": "health"})["ok"] is True


def test_unknown_type(gateway):
    r = handlers.handle_message({"type": "transfer"})
    assert r["ok"] is False and r["code"] == 400


def test_long_password_same_reply_for_known_and_unknown_user(gateway, memory_store):
    add_user("lena@example.com", "s3cret!")
    long_pw = "x" * 100

    known = _login("lena@example.com", long_pw, ip="203.0.113.60")
    unknown = _login("ghost@example.com", long_pw, ip="203.0.113.61")

    assert known == unknown
    assert known["code"] == 401
    assert len(memory_store.load("origin:203.0.113.60").failures) == 1
    assert len(memory_store.load("origin:203.0.113.61").failures) == 1
