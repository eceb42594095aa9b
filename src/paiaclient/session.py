"""PAIA login sessions.

An :class:`AuthSession` owns the bearer token of one patron interaction. It is
either unauthenticated or authenticated with a token, a patron id and an
expiry time. An expired (or invalidated) token is replaced by exactly one
re-login with the credentials of the last successful login.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, NamedTuple, Optional, Protocol

from paiaclient.exceptions import (
    PaiaAuthenticationFailedError,
    PaiaError,
    PaiaInvalidCredentialsError,
    PaiaProtocolError,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class Session:
    """Login state returned by PAIA auth.

    Attributes:
        token (str): The bearer access token.
        patron_id (str): The patron identifier the token was issued for.
        scope (List[str]): Granted scopes.
        expires_at (datetime | None): When the token stops being valid. None
            means the server did not say; the token is then used until the
            server rejects it.
        expired (bool): Set once the token is known to be rejected.
    """

    token: str
    patron_id: str
    scope: List[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None
    expired: bool = False

    @classmethod
    def from_login_response(cls, response: dict, now: Optional[datetime] = None) -> "Session":
        """Build a session from an ``auth/login`` response.

        Raises:
            PaiaProtocolError: If ``expires_in`` is not a number.
        """
        now = now or utc_now()
        scope = response.get("scope")
        expires_in = response.get("expires_in")
        expires_at = None
        if expires_in is not None:
            try:
                expires_at = now + timedelta(seconds=float(expires_in))
            except (TypeError, ValueError, OverflowError):
                raise PaiaProtocolError(
                    "invalid_response", f"expires_in is not a number: {expires_in!r}"
                )
        return cls(
            token=str(response["access_token"]),
            patron_id=str(response["patron"]),
            scope=str(scope).split(" ") if scope else [],
            expires_at=expires_at,
        )

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.token or self.expired:
            return False
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utc_now())


class SessionStore(Protocol):
    """Persistent storage of the session (e.g. a web session)."""

    def get(self) -> Optional[Session]: ...  # pragma: no cover

    def set(self, session: Optional[Session]) -> None: ...  # pragma: no cover


class InMemorySessionStore:
    """Keeps the session on the instance. Used when no store is injected."""

    def __init__(self, session: Optional[Session] = None):
        self._session = session

    def get(self) -> Optional[Session]:
        return self._session

    def set(self, session: Optional[Session]) -> None:
        self._session = session


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class _Credentials(NamedTuple):
    username: str
    password: str


LoginCall = Callable[[str, str], Session]


class AuthSession:
    """Session lifecycle for a single patron connection.

    Parameters:
        login_call (Callable[[str, str], Session]): Performs the PAIA login
            request and returns the new session. Raises a PaiaError on failure.
        store (SessionStore, optional): Where the session lives. Defaults to an
            InMemorySessionStore.
        clock (Callable[[], datetime], optional): Source of the current time.

    Not safe for concurrent use; callers serialize access per session.
    """

    def __init__(
        self,
        login_call: LoginCall,
        store: Optional[SessionStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._login_call = login_call
        self._store: SessionStore = store if store is not None else InMemorySessionStore()
        self._clock = clock
        self._credentials: Optional[_Credentials] = None
        self.login_count = 0

    @property
    def session(self) -> Optional[Session]:
        return self._store.get()

    @property
    def state(self) -> SessionState:
        if self._store.get() is None:
            return SessionState.UNAUTHENTICATED
        return SessionState.AUTHENTICATED

    @property
    def patron_id(self) -> Optional[str]:
        session = self._store.get()
        return session.patron_id if session else None

    @property
    def token(self) -> Optional[str]:
        session = self._store.get()
        return session.token if session else None

    def is_valid(self) -> bool:
        session = self._store.get()
        return session is not None and session.is_valid(self._clock())

    def login(self, username: str, password: str) -> Session:
        """Log in with the given credentials.

        Raises:
            PaiaInvalidCredentialsError: If username or password is empty. No
                request is sent.
            PaiaAuthenticationFailedError: If the server denies access. The
                session becomes unauthenticated.
            PaiaProtocolError: For any other error envelope. The session is left
                as it was.
            PaiaTransportError: If the server could not be reached.
        """
        if not username or not password:
            raise PaiaInvalidCredentialsError()

        try:
            session = self._login_call(username, password)
        except PaiaAuthenticationFailedError:
            self._reset()
            raise

        logger.info(f"Logged in to PAIA as patron {session.patron_id}")
        self._store.set(session)
        self.login_count += 1
        self._credentials = _Credentials(username, password)
        return session

    def ensure_valid(self) -> Session:
        """Return a session with an unexpired token, logging in again if needed.

        Performs at most one re-login. If it fails the session becomes
        unauthenticated and the underlying error is raised.

        Raises:
            PaiaAuthenticationFailedError: If there is no session to renew.
        """
        session = self._store.get()
        if session is None:
            raise PaiaAuthenticationFailedError(
                "not_authenticated", "No PAIA session, log in first"
            )
        if session.is_valid(self._clock()):
            return session
        if self._credentials is None:
            self._reset()
            raise PaiaAuthenticationFailedError(
                "not_authenticated", "PAIA session expired and no credentials to renew it"
            )

        logger.info("PAIA session expired, logging in again")
        username, password = self._credentials
        try:
            session = self._login_call(username, password)
        except PaiaError:
            self._reset()
            raise
        self._store.set(session)
        self.login_count += 1
        return session

    def resume(self, username: str, password: str) -> bool:
        """Reuse a still valid session (e.g. restored from the store) for these credentials.

        Returns False if there is no valid session to reuse, or if the
        credentials differ from those of the last successful login. A session
        that came from the store without credentials adopts these ones.
        """
        if not self.is_valid():
            return False
        credentials = _Credentials(username, password)
        if self._credentials is None:
            self._credentials = credentials
            return True
        return self._credentials == credentials

    def invalidate(self) -> None:
        """Mark the current token as expired. Credentials are kept for re-login."""
        session = self._store.get()
        if session is not None:
            self._store.set(replace(session, expired=True))

    def _reset(self) -> None:
        self._store.set(None)
        self._credentials = None
