from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from paiaclient.exceptions import (
    PaiaAuthenticationFailedError,
    PaiaInvalidCredentialsError,
    PaiaProtocolError,
    PaiaServerError,
    PaiaSystemUnavailableError,
)
from paiaclient.session import AuthSession, InMemorySessionStore, Session, SessionState

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def make_session(token="token-1", expires_in=3600):
    return Session(
        token=token, patron_id="P123", scope=["read_items"],
        expires_at=NOW + timedelta(seconds=expires_in),
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def login_call():
    tokens = iter(f"token-{n}" for n in range(1, 10))
    return Mock(side_effect=lambda username, password: make_session(next(tokens)))


@pytest.fixture
def auth_session(login_call, clock):
    return AuthSession(login_call, clock=clock)


class TestSession:
    def test_from_login_response(self):
        session = Session.from_login_response(
            {
                "access_token": "abc",
                "patron": "P123",
                "scope": "read_patron read_items",
                "expires_in": 3600,
            },
            now=NOW,
        )
        assert session.token == "abc"
        assert session.patron_id == "P123"
        assert session.scope == ["read_patron", "read_items"]
        assert session.expires_at == NOW + timedelta(hours=1)

    def test_without_expiry_is_valid_until_rejected(self):
        session = Session.from_login_response({"access_token": "abc", "patron": "P123"}, now=NOW)
        assert session.expires_at is None
        assert session.scope == []
        assert session.is_valid(NOW)
        assert session.is_valid(NOW + timedelta(days=365))

        session.expired = True
        assert not session.is_valid(NOW)

    @pytest.mark.parametrize("expires_in", ["soon", [], "inf"])
    def test_invalid_expires_in(self, expires_in):
        with pytest.raises(PaiaProtocolError):
            Session.from_login_response(
                {"access_token": "abc", "patron": "P123", "expires_in": expires_in}, now=NOW
            )

    def test_is_valid(self):
        session = make_session(expires_in=60)
        assert session.is_valid(NOW)
        assert not session.is_valid(NOW + timedelta(seconds=60))


class TestLogin:
    def test_starts_unauthenticated(self, auth_session):
        assert auth_session.state is SessionState.UNAUTHENTICATED
        assert auth_session.patron_id is None
        assert auth_session.token is None
        assert not auth_session.is_valid()

    def test_login(self, auth_session, login_call):
        session = auth_session.login("reader", "secret")

        login_call.assert_called_once_with("reader", "secret")
        assert session.token == "token-1"
        assert auth_session.state is SessionState.AUTHENTICATED
        assert auth_session.patron_id == "P123"
        assert auth_session.login_count == 1

    @pytest.mark.parametrize("username,password", [("", "secret"), ("reader", ""), ("", "")])
    def test_empty_credentials(self, auth_session, login_call, username, password):
        with pytest.raises(PaiaInvalidCredentialsError):
            auth_session.login(username, password)
        login_call.assert_not_called()

    def test_access_denied_resets(self, auth_session, login_call):
        auth_session.login("reader", "secret")
        login_call.side_effect = PaiaAuthenticationFailedError("access_denied", code=403)

        with pytest.raises(PaiaAuthenticationFailedError):
            auth_session.login("reader", "wrong")

        assert auth_session.state is SessionState.UNAUTHENTICATED

    @pytest.mark.parametrize(
        "error",
        [PaiaServerError("internal", code=500), PaiaSystemUnavailableError("refused")],
    )
    def test_other_errors_keep_state(self, auth_session, login_call, error):
        auth_session.login("reader", "secret")
        login_call.side_effect = error

        with pytest.raises(type(error)):
            auth_session.login("reader", "secret")

        assert auth_session.state is SessionState.AUTHENTICATED
        assert auth_session.token == "token-1"


class TestEnsureValid:
    def test_requires_login(self, auth_session, login_call):
        with pytest.raises(PaiaAuthenticationFailedError):
            auth_session.ensure_valid()
        login_call.assert_not_called()

    def test_valid_session_is_reused(self, auth_session, login_call):
        auth_session.login("reader", "secret")

        assert auth_session.ensure_valid().token == "token-1"
        assert auth_session.ensure_valid().token == "token-1"
        assert login_call.call_count == 1

    def test_expired_session_logs_in_once(self, auth_session, login_call, clock):
        auth_session.login("reader", "secret")
        clock.now = NOW + timedelta(hours=2)
        login_call.side_effect = lambda username, password: Session(
            token="token-2", patron_id="P123", expires_at=clock.now + timedelta(hours=1)
        )

        assert auth_session.ensure_valid().token == "token-2"
        assert auth_session.ensure_valid().token == "token-2"
        assert login_call.call_count == 2
        login_call.assert_called_with("reader", "secret")
        assert auth_session.login_count == 2

    def test_failed_relogin_resets(self, auth_session, login_call, clock):
        auth_session.login("reader", "secret")
        clock.now = NOW + timedelta(hours=2)
        login_call.side_effect = PaiaAuthenticationFailedError("access_denied", code=403)

        with pytest.raises(PaiaAuthenticationFailedError):
            auth_session.ensure_valid()

        assert login_call.call_count == 2
        assert auth_session.state is SessionState.UNAUTHENTICATED
        with pytest.raises(PaiaAuthenticationFailedError):
            auth_session.ensure_valid()
        assert login_call.call_count == 2

    def test_transport_failure_during_relogin_resets(self, auth_session, login_call, clock):
        auth_session.login("reader", "secret")
        clock.now = NOW + timedelta(hours=2)
        login_call.side_effect = PaiaSystemUnavailableError("refused")

        with pytest.raises(PaiaSystemUnavailableError):
            auth_session.ensure_valid()
        assert auth_session.state is SessionState.UNAUTHENTICATED

    def test_invalidate_forces_relogin(self, auth_session, login_call):
        auth_session.login("reader", "secret")
        auth_session.invalidate()

        assert auth_session.state is SessionState.AUTHENTICATED
        assert not auth_session.is_valid()
        assert auth_session.ensure_valid().token == "token-2"

    def test_stored_session_without_credentials(self, login_call, clock):
        store = InMemorySessionStore(make_session(expires_in=-1))
        auth_session = AuthSession(login_call, store=store, clock=clock)

        with pytest.raises(PaiaAuthenticationFailedError):
            auth_session.ensure_valid()

        login_call.assert_not_called()
        assert store.get() is None


class TestResume:
    def test_resume_valid_stored_session(self, login_call, clock):
        store = InMemorySessionStore(make_session(token="stored"))
        auth_session = AuthSession(login_call, store=store, clock=clock)

        assert auth_session.resume("reader", "secret") is True
        assert auth_session.ensure_valid().token == "stored"
        login_call.assert_not_called()

    def test_resume_keeps_credentials_for_relogin(self, login_call, clock):
        store = InMemorySessionStore(make_session(token="stored"))
        auth_session = AuthSession(login_call, store=store, clock=clock)
        auth_session.resume("reader", "secret")
        clock.now = NOW + timedelta(hours=2)

        auth_session.ensure_valid()

        login_call.assert_called_once_with("reader", "secret")

    def test_nothing_to_resume(self, auth_session):
        assert auth_session.resume("reader", "secret") is False

    def test_other_credentials_are_not_resumed(self, auth_session, login_call):
        auth_session.login("reader", "secret")

        assert auth_session.resume("reader", "wrong") is False
        assert auth_session.resume("someone", "secret") is False
        assert auth_session.resume("reader", "secret") is True

        auth_session.invalidate()
        auth_session.ensure_valid()
        login_call.assert_called_with("reader", "secret")


class TestUnknownExpiry:
    def test_token_is_reused_until_invalidated(self, login_call, clock):
        login_call.side_effect = lambda username, password: Session(
            token=f"token-{login_call.call_count}", patron_id="P123"
        )
        auth_session = AuthSession(login_call, clock=clock)
        auth_session.login("reader", "secret")
        clock.now = NOW + timedelta(days=30)

        assert auth_session.ensure_valid().token == "token-1"
        assert login_call.call_count == 1

        auth_session.invalidate()
        assert auth_session.ensure_valid().token == "token-2"
        assert login_call.call_count == 2
