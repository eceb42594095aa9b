from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING

import httpx

from paiaclient.session import AuthSession

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Generator
    import ssl


@dataclass(frozen=True)
class PaiaConnectionParameters:
    """Parameters required to connect to a PAIA server.

    Attributes:
        base_url (str): The base URL of the PAIA service, ending in a slash.
        ssl_verify (bool): Whether to verify SSL certificates.
        timeout (httpx.Timeout): Configured timeout object for HTTP requests.
    """

    base_url: str
    ssl_verify: bool | ssl.SSLContext
    timeout: httpx.Timeout


class PaiaAuth(httpx.Auth):
    """Bearer token authentication for PAIA core requests.

    Makes sure the AuthSession holds an unexpired token before every request
    and marks the token as expired when the server answers with HTTP 401, so
    that the next request logs in again.
    """

    def __init__(self, auth_session: AuthSession):
        self._auth_session = auth_session

    @property
    def auth_session(self) -> AuthSession:
        return self._auth_session

    def sync_auth_flow(
        self, request: httpx.Request
    ) -> "Generator[httpx.Request, httpx.Response, None]":
        session = self._auth_session.ensure_valid()
        request.headers["Authorization"] = f"Bearer {session.token}"

        response = yield request

        if response.status_code == HTTPStatus.UNAUTHORIZED:
            self._auth_session.invalidate()

    @property
    def paia_auth_token(self) -> str:
        """Property that returns a currently valid PAIA access token"""
        return self._auth_session.ensure_valid().token
