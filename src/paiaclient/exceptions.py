"""
Custom exceptions for the paiaclient package.

This module provides PAIA-specific exceptions. Transport failures wrap the
httpx exceptions they come from, protocol failures carry the fields of the
PAIA error envelope (``error``, ``error_description`` and ``code``).
"""

import functools
from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    Optional,
    ParamSpec,
    Type,
    TypeVar,
    cast,
)

import httpx

P = ParamSpec("P")
T = TypeVar("T")


# Base PAIA exceptions
class PaiaError(Exception):
    """Base exception for all PAIA-related errors."""

    pass


class PaiaClientClosed(PaiaError):
    """
    Raised when an operation is attempted on a closed PaiaClient.
    """

    def __init__(self, message: str = "The PaiaClient is closed") -> None:
        super().__init__(message)


class PaiaInvalidCredentialsError(PaiaError):
    """
    Raised when a login is attempted with an empty username or password.
    No request is sent to the PAIA server in that case.
    """

    def __init__(self, message: str = "Invalid Login, Please try again.") -> None:
        super().__init__(message)


# Protocol errors (decoded error envelopes)
class PaiaProtocolError(PaiaError):
    """
    Raised when the PAIA server answers with an error envelope, or when a
    success response lacks fields the protocol requires.
    """

    def __init__(
        self,
        error: str,
        error_description: str = "",
        code: Optional[int] = None,
    ) -> None:
        super().__init__(error)
        self.error = error
        self.error_description = error_description
        self.code = code

    def __str__(self) -> str:
        detail = f": {self.error_description}" if self.error_description else ""
        if self.code is not None:
            return f"PAIA error {self.code} {self.error}{detail}"
        return f"PAIA error {self.error}{detail}"


class PaiaAuthenticationFailedError(PaiaProtocolError):
    """
    Raised when the PAIA server rejects the patron credentials (access_denied).
    """

    def __str__(self) -> str:
        return f"PAIA authentication failed: {self.error_description or self.error}"


class PaiaTokenExpiredError(PaiaProtocolError):
    """
    Raised for 401-coded error envelopes. The access token is no longer valid
    and the next request has to log in again.
    """

    #: False once a re-login was already spent on the failing operation
    retryable: bool = True

    def __str__(self) -> str:
        return f"PAIA access token expired: {self.error_description or self.error}"


class PaiaMissingPatronError(PaiaProtocolError):
    """
    Raised when a login response carries an access token but no patron id.
    """

    def __init__(
        self,
        error: str = "Login credentials accepted, but got no patron ID",
        error_description: str = "",
        code: Optional[int] = None,
    ) -> None:
        super().__init__(error, error_description, code)


class PaiaPermissionError(PaiaProtocolError):
    """
    Raised for 403-coded envelopes, e.g. insufficient_scope.
    """

    def __str__(self) -> str:
        return f"PAIA permission denied: {self.error_description or self.error}"


class PaiaNotFoundError(PaiaProtocolError):
    """
    Raised for 404-coded envelopes: unknown patron or endpoint.
    """

    def __str__(self) -> str:
        return f"PAIA resource not found: {self.error_description or self.error}"


class PaiaServerError(PaiaProtocolError):
    """
    Raised for 5xx-coded envelopes.
    """

    def __str__(self) -> str:
        return f"PAIA server error: {self.error_description or self.error} ({self.code})"


# Transport errors
class PaiaTransportError(PaiaError, httpx.RequestError):
    """
    Base class for PAIA transport errors.
    Raised when the PAIA server cannot be reached or the exchange breaks down.
    """

    def __init__(self, message: str, *, request: Optional[httpx.Request] = None) -> None:
        super().__init__(message)
        self.message = message
        self._request = request

    def __str__(self) -> str:
        return f"PAIA transport error: {self.message}"


class PaiaSystemUnavailableError(PaiaTransportError):
    """
    Raised when the PAIA server refuses or drops the connection.
    """

    def __str__(self) -> str:
        return f"PAIA system unavailable: {self.message}"


class PaiaTimeoutError(PaiaTransportError):
    """
    Raised when requests to the PAIA server time out.
    """

    def __str__(self) -> str:
        return f"PAIA request timeout: {self.message}"


class PaiaRemoteProtocolError(PaiaTransportError):
    """
    Raised when the PAIA server violates the HTTP protocol.
    """

    def __str__(self) -> str:
        return f"PAIA remote protocol error: {self.message}"


class PaiaNetworkError(PaiaTransportError):
    """
    Raised for general network connectivity issues: DNS failures, resets, etc.
    """

    def __str__(self) -> str:
        return f"PAIA network error: {self.message}"


# Exception mapping dictionaries
_ENVELOPE_CODE_EXCEPTIONS: Dict[int, Type[PaiaProtocolError]] = {
    401: PaiaTokenExpiredError,
    403: PaiaPermissionError,
    404: PaiaNotFoundError,
}

_TRANSPORT_EXCEPTIONS: Dict[Type[httpx.RequestError], Type[PaiaTransportError]] = {
    httpx.ConnectError: PaiaSystemUnavailableError,
    httpx.RemoteProtocolError: PaiaRemoteProtocolError,
    httpx.NetworkError: PaiaNetworkError,
}

ACCESS_DENIED = "access_denied"


def _envelope_code(envelope: Mapping[str, Any]) -> Optional[int]:
    try:
        return int(envelope["code"])
    except (KeyError, TypeError, ValueError):
        return None


def create_paia_exception(
    envelope: Mapping[str, Any], *, login: bool = False
) -> PaiaProtocolError:
    """Create the PAIA exception matching a decoded error envelope.

    A ``code`` of 401 means the access token expired. On the login endpoint
    ``access_denied`` and 401 mean the credentials were rejected.
    """
    error = str(envelope.get("error", ""))
    description = str(envelope.get("error_description", "") or "")
    code = _envelope_code(envelope)

    if login and (error == ACCESS_DENIED or code == 401):
        return PaiaAuthenticationFailedError(error, description, code)
    if code in _ENVELOPE_CODE_EXCEPTIONS:
        return _ENVELOPE_CODE_EXCEPTIONS[code](error, description, code)
    if code is not None and code >= 500:
        return PaiaServerError(error, description, code)
    return PaiaProtocolError(error, description, code)


def _create_transport_exception(original_error: httpx.RequestError) -> PaiaTransportError:
    """Create appropriate PAIA transport exception based on the original httpx error."""
    try:
        request = original_error.request
    except RuntimeError:
        request = None

    if isinstance(original_error, httpx.TimeoutException):
        return PaiaTimeoutError(str(original_error), request=request)
    for error_type, exception_class in _TRANSPORT_EXCEPTIONS.items():
        if isinstance(original_error, error_type):
            return exception_class(str(original_error), request=request)
    return PaiaTransportError(f"Transport error: {original_error}", request=request)


def paia_errors(func: Callable[P, T]) -> Callable[P, T]:
    """
    Decorator that converts httpx request errors to PAIA transport exceptions.

    Usage:
        >>> @paia_errors
        ... def get_items(self, patron_id: str):
        ...     response = self.httpx_client.get(f"core/{patron_id}/items")
        ...     return response.json()
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except PaiaTransportError:
            raise
        except httpx.RequestError as e:
            raise _create_transport_exception(e) from e

    return cast(Callable[P, T], wrapper)
