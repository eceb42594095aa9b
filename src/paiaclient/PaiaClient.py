from __future__ import annotations

import json
import logging
import os
from datetime import date
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union, cast, TYPE_CHECKING

import httpx

from paiaclient._httpx import PaiaAuth, PaiaConnectionParameters
from paiaclient.decorators import paia_retry_on_token_expired, use_client_session
from paiaclient.exceptions import (
    PaiaClientClosed,
    PaiaError,
    PaiaInvalidCredentialsError,
    PaiaMissingPatronError,
    PaiaProtocolError,
    PaiaTokenExpiredError,
    PaiaTransportError,
    create_paia_exception,
    paia_errors,
)
from paiaclient.fees import FeeRecord, FeeTypeStrategy, RecordLoader, normalize_fees
from paiaclient.items import (
    AlternativeIdResolver,
    HoldRecord,
    ItemDocument,
    ItemView,
    LoanRecord,
    ProjectionOptions,
    StorageRequestRecord,
    filter_by_status,
    identity,
    project_items,
    view_filter,
)
from paiaclient.models import ActionResult, ItemResult, Patron, Profile
from paiaclient.session import AuthSession, Session, SessionStore
from paiaclient.status import PaiaStatus, status_equals

if TYPE_CHECKING:  # pragma: no cover
    import ssl


# Conditional import of orjson to support faster JSON processing if available
try:  # pragma: no cover
    import orjson  # type: ignore

    if (
        os.environ.get("PAIACLIENT_PREFER_ORJSON", "0") != "0"
    ):  # Allow user to disable orjson via env var
        _HAS_ORJSON = True
    else:
        _HAS_ORJSON = False

    def _orjson_loads(data):
        return orjson.loads(data)

    JSON_DECODE_ERRORS = (json.JSONDecodeError, orjson.JSONDecodeError)  # type: ignore

except ImportError:
    _HAS_ORJSON = False
    JSON_DECODE_ERRORS = (json.JSONDecodeError,)  # type: ignore

# Constants
CONTENT_TYPE_JSON = "application/json; charset=UTF-8"

DEFAULT_SCOPE = ("read_patron", "read_fees", "read_items", "write_items", "change_password")

DEFAULT_HOLD_STATUSES = (PaiaStatus.RESERVED, PaiaStatus.ORDERED, PaiaStatus.PROVIDED)

USER_AGENT_STRING = "PAIA Client (python-paiaclient)"

try:
    timeout_str = os.environ.get("PAIACLIENT_HTTP_TIMEOUT")
    HTTPX_TIMEOUT = float(timeout_str) if timeout_str is not None else None
except (TypeError, ValueError):
    HTTPX_TIMEOUT = None

# Set up logger
logger = logging.getLogger("PaiaClient")


# Sentinel value for detecting unset timeout parameter
class _TimeoutUnsetType:
    def __repr__(self):
        return "_TIMEOUT_UNSET"


_TIMEOUT_UNSET = _TimeoutUnsetType()


def _get_timeout_config() -> dict:
    """Get timeout configuration from environment variables.

    Returns:
        dict: Timeout configuration dictionary with connect, read, write, and pool timeouts.
    """
    return {
        key: float(os.environ[f"PAIACLIENT_{key.upper()}_TIMEOUT"])
        if f"PAIACLIENT_{key.upper()}_TIMEOUT" in os.environ
        else None
        for key in ("connect", "read", "write", "pool")
    }


HoldLinkBuilder = Callable[[str, Mapping[str, Any]], Optional[str]]


class PaiaClient:
    """A Python client for PAIA patron account services

    PAIA (Patrons Account Information API) lets a patron log in to a library
    system, list loans, holds and fees, and renew, request or cancel items.

    This class handles the login session and bearer token, and turns the
    PAIA documents into normalized records for a catalog front end.

    Initialization:
        PaiaClient is designed to be used as a context manager

        >>> from paiaclient import PaiaClient
        >>> with PaiaClient("https://paia.example.org/isil/DE-830/") as paia:
        ...     patron = paia.patron_login("123456789", "secret")
        ...     for loan in paia.get_loans(patron):
        ...         print(loan.title, loan.due_time)

    Parameters:
        base_url (str): The base URL of the PAIA service.
        ssl_verify (bool | ssl.SSLContext), keyword-only: Whether to verify SSL
            certificates, or a custom SSL context. Default is True.
        timeout (float | dict | httpx.Timeout | None, optional), keyword-only: Timeout
            configuration for HTTP requests. Defaults to the environment configuration.
        transport (httpx.BaseTransport, optional), keyword-only: Transport used for all
            requests. Defaults to httpx's HTTP transport.
        hold_statuses (Iterable[int]), keyword-only: Status codes listed as holds.
        renewable_default (bool), keyword-only: Renewability of loans whose document
            has no ``canrenew`` field.
        scope (Iterable[str]), keyword-only: Scopes requested at login.
        alternative_id_resolver (Callable[[str], str], optional), keyword-only: Maps
            edition URIs to catalog record ids.
        hold_link_builder (Callable, optional), keyword-only: Builds hold links for
            catalog records.
        fee_type_strategies (Mapping[str, Callable], optional), keyword-only: Special
            handling of fees by ``feetypeid``.
        record_loader (RecordLoader, optional), keyword-only: Loads catalog records
            for fees.
        session_store (SessionStore, optional), keyword-only: Where the login session
            is kept. Defaults to memory.
    """

    def __init__(
        self,
        base_url: str,
        *,
        ssl_verify: bool | ssl.SSLContext = True,
        timeout: float | dict | httpx.Timeout | None | _TimeoutUnsetType = _TIMEOUT_UNSET,
        transport: httpx.BaseTransport | None = None,
        hold_statuses: Iterable[int] = DEFAULT_HOLD_STATUSES,
        renewable_default: bool = False,
        scope: Iterable[str] = DEFAULT_SCOPE,
        alternative_id_resolver: AlternativeIdResolver | None = None,
        hold_link_builder: HoldLinkBuilder | None = None,
        fee_type_strategies: Mapping[str, FeeTypeStrategy] | None = None,
        record_loader: RecordLoader | None = None,
        session_store: SessionStore | None = None,
    ):
        if httpx.URL(base_url).scheme not in ("http", "https"):
            raise httpx.UnsupportedProtocol(
                f"PAIA base URL must use http or https: {base_url!r}"
            )
        if not base_url.endswith("/"):
            base_url += "/"

        if timeout is _TIMEOUT_UNSET:
            timeout_value: httpx.Timeout = PaiaClient._construct_timeout_from_env()
        elif timeout is None:
            timeout_value = httpx.Timeout(None)
        else:
            timeout_value = PaiaClient._construct_timeout(
                cast(Union[float, dict, httpx.Timeout], timeout)
            )

        self.paia_parameters = PaiaConnectionParameters(
            base_url=base_url,
            ssl_verify=ssl_verify,
            timeout=timeout_value,
        )
        self.hold_statuses = tuple(int(status) for status in hold_statuses)
        self.scope = tuple(scope)
        self.projection_options = ProjectionOptions(
            resolve_id=alternative_id_resolver or identity,
            renewable_default=renewable_default,
        )
        self.hold_link_builder = hold_link_builder
        self.fee_type_strategies: Mapping[str, FeeTypeStrategy] = fee_type_strategies or {}
        self.record_loader = record_loader
        self._transport = transport
        self.auth_session = AuthSession(self._paia_login, store=session_store)
        self.paia_auth = PaiaAuth(self.auth_session)
        self.base_headers = {
            "Content-Type": CONTENT_TYPE_JSON,
            "Accept": "application/json",
            "User-Agent": USER_AGENT_STRING,
        }
        self.httpx_client: httpx.Client | None = None
        self.is_closed = False

    def __repr__(self) -> str:
        patron_id = self.auth_session.patron_id
        if patron_id:
            return f"PaiaClient at {self.base_url} for patron {patron_id}"
        return f"PaiaClient at {self.base_url}"

    def __enter__(self):
        """Context manager entry for PaiaClient.

        Returns:
            PaiaClient: The PaiaClient instance.

        Note:
            Instantiates the httpx.Client used for all requests of the block.
        """
        self.validate_client_open()
        self.httpx_client = self.get_paia_http_client()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        """Context manager exit method.

        Closes the httpx.Client and marks the PaiaClient as closed. The login
        session stays in the session store; PAIA has no logout in this client.
        """
        if self.httpx_client and not self.httpx_client.is_closed:
            self.httpx_client.close()
        self.httpx_client = None
        self.is_closed = True

    def close(self) -> None:
        """Manually close the PaiaClient object.

        This should only be used when running PaiaClient outside a context manager.
        """
        self.__exit__(None, None, None)

    @staticmethod
    def _construct_timeout_from_env() -> httpx.Timeout:
        """Construct httpx.Timeout object from environment variables only.

        Returns:
            httpx.Timeout: Configured timeout object from environment variables.
                          If no environment configuration is found, returns httpx.Timeout(None).
        """
        default_timeout_config = {k: v for k, v in _get_timeout_config().items() if v is not None}

        if not default_timeout_config and HTTPX_TIMEOUT is None:
            return httpx.Timeout(None)

        return httpx.Timeout(HTTPX_TIMEOUT, **default_timeout_config)

    @staticmethod
    def _construct_timeout(timeout: float | dict | httpx.Timeout) -> httpx.Timeout:
        """Construct httpx.Timeout object from user-provided timeout parameter.

        If timeout is a dict, any unspecified values will be replaced by the environment
        default values.
        """
        if isinstance(timeout, httpx.Timeout):
            return timeout
        elif isinstance(timeout, dict):
            default_timeout_config = {
                k: v for k, v in _get_timeout_config().items() if v is not None
            }
            merged_timeout = {**default_timeout_config, **timeout}
            return httpx.Timeout(HTTPX_TIMEOUT, **merged_timeout)
        else:
            return httpx.Timeout(timeout)

    @property
    def base_url(self) -> str:
        return self.paia_parameters.base_url

    @property
    def ssl_verify(self) -> bool | ssl.SSLContext:
        return self.paia_parameters.ssl_verify

    @property
    def access_token(self) -> str:
        """A currently valid access token, logging in again if it expired."""
        return self.paia_auth.paia_auth_token

    @property
    def access_token_expires(self) -> Optional[datetime]:
        session = self.auth_session.session
        return session.expires_at if session else None

    def validate_client_open(self):
        if self.is_closed:
            raise PaiaClientClosed()

    def get_paia_http_client(self) -> httpx.Client:
        """Returns a httpx client for use in PAIA communication.

        Returns:
            httpx.Client: Configured HTTP client for PAIA API calls.
        """
        return httpx.Client(
            timeout=self.paia_parameters.timeout,
            verify=self.paia_parameters.ssl_verify,
            base_url=self.base_url,
            auth=self.paia_auth,
            headers=self.base_headers,
            transport=self._transport,
        )

    # Request plumbing

    @staticmethod
    def handle_json_response(response: httpx.Response) -> Any:
        """Decode a JSON response body, or return None if it is not JSON."""
        try:
            if _HAS_ORJSON:
                return _orjson_loads(response.content)
            else:
                return response.json()
        except JSON_DECODE_ERRORS:
            return None

    def decode_paia_response(self, response: httpx.Response, *, login: bool = False) -> Any:
        """Decode a PAIA response and raise for error envelopes.

        Raises:
            PaiaTokenExpiredError: For 401-coded envelopes. The session is
                invalidated, so the next request logs in again.
            PaiaProtocolError: For any other envelope, or a body that is not JSON.
        """
        if not response.is_success:
            logger.debug(f"HTTP status {response.status_code} received from {response.url}")

        data = self.handle_json_response(response)
        if data is None:
            data = {
                "error": response.reason_phrase or "invalid_response",
                "error_description": "PAIA response is not JSON",
                "code": response.status_code,
            }
        if isinstance(data, dict) and "error" in data:
            error = create_paia_exception(data, login=login)
            if isinstance(error, PaiaTokenExpiredError):
                self.auth_session.invalidate()
            raise error
        return data

    @paia_errors
    @use_client_session
    def _paia_request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        *,
        login: bool = False,
    ) -> Any:
        """Send one request to PAIA and decode its body.

        Login requests are sent without the bearer token.
        """
        client = cast(httpx.Client, self.httpx_client)
        kwargs: Dict[str, Any] = {}
        if payload is not None:
            kwargs["json"] = payload
        if login:
            kwargs["auth"] = None
        response = client.request(method, path.lstrip("/"), **kwargs)
        return self.decode_paia_response(response, login=login)

    def _authenticated_request(self, method: str, path: str, payload: Any = None) -> Any:
        return self._send_with_relogin(
            method, path, payload, logins=self.auth_session.login_count
        )

    @paia_retry_on_token_expired
    def _send_with_relogin(
        self, method: str, path: str, payload: Any = None, *, logins: int = 0
    ) -> Any:
        try:
            return self._paia_request(method, path, payload)
        except PaiaTokenExpiredError as error:
            # a re-login already happened for this operation
            if self.auth_session.login_count > logins:
                error.retryable = False
            raise

    def paia_get(self, path: str) -> Any:
        """Authenticated GET against the PAIA server.

        Args:
            path (str): Endpoint path relative to the base URL, e.g. ``core/123/items``.

        Returns:
            Any: The decoded JSON body.

        Raises:
            PaiaProtocolError: For error envelopes.
            PaiaTransportError: For network connectivity issues.
        """
        self.validate_client_open()
        return self._authenticated_request("GET", path)

    def paia_post(self, path: str, payload: Any) -> Any:
        """Authenticated POST of a JSON payload against the PAIA server."""
        self.validate_client_open()
        return self._authenticated_request("POST", path, payload)

    # Authentication

    def _paia_login(self, username: str, password: str) -> Session:
        """POST auth/login and build the session from the response."""
        payload = {
            "username": username,
            "password": password,
            "grant_type": "password",
            "scope": " ".join(self.scope),
        }
        response = self._paia_request("POST", "auth/login", payload, login=True)
        if not isinstance(response, dict) or not response.get("access_token"):
            raise PaiaProtocolError("invalid_response", "Unknown error! Access denied.")
        if not response.get("patron"):
            raise PaiaMissingPatronError()
        return Session.from_login_response(response)

    def login(self, username: str, password: str) -> Session:
        """Log in to PAIA and store the new session.

        Raises:
            PaiaInvalidCredentialsError: If username or password is empty.
            PaiaAuthenticationFailedError: If the credentials are rejected.
            PaiaProtocolError: For other error envelopes or incomplete responses.
            PaiaTransportError: For network connectivity issues.
        """
        self.validate_client_open()
        return self.auth_session.login(username, password)

    def patron_login(self, username: str, password: str) -> Patron:
        """Log a patron in and return their details.

        A still valid session is reused without a login request when the
        credentials match those of the last login. If fetching the patron
        details with it fails, the patron is logged in again.
        Failures always propagate.
        """
        self.validate_client_open()
        if not username or not password:
            raise PaiaInvalidCredentialsError()

        if self.auth_session.resume(username, password):
            try:
                return self._get_patron(username)
            except PaiaError as error:
                logger.info(f"PAIA session could not be reused, logging in again ({error})")
        self.auth_session.login(username, password)
        return self._get_patron(username)

    def _get_patron(self, username: str) -> Patron:
        patron_id = cast(str, self.auth_session.patron_id)
        response = self.paia_get(f"core/{patron_id}")
        if not isinstance(response, dict):
            raise PaiaProtocolError("invalid_response", "Patron response is not an object")
        return Patron.from_paia(patron_id, username, response)

    def change_password(self, patron: Patron, old_password: str, new_password: str) -> ItemResult:
        """Change the patron's password.

        Returns:
            ItemResult: success is True only if the server echoes the patron id.
        """
        payload = {
            "patron": patron.id,
            "username": patron.id,
            "old_password": old_password,
            "new_password": new_password,
        }
        try:
            response = self.paia_post("auth/change", payload)
        except PaiaProtocolError as error:
            logger.debug(f"{error.code}:{error.error}")
            return ItemResult(
                success=False,
                status=error.error,
                sys_message=f"{error.error} {error.error_description}".strip(),
            )
        except PaiaTransportError as error:
            logger.warning(f"Changing password failed: {error}")
            return ItemResult(success=False, status=str(error))

        echoed = response.get("patron") if isinstance(response, dict) else response
        if isinstance(echoed, dict) and "error" in echoed:
            return ItemResult(
                success=False,
                status=str(echoed["error"]),
                sys_message=str(echoed.get("error_description", "")),
            )
        if echoed == patron.id:
            return ItemResult(success=True, status="Successfully changed")
        return ItemResult(
            success=False, status="Failure changing password", sys_message=repr(response)
        )

    # Read operations

    def _read(self, path: str, what: str) -> Any:
        """GET for read operations: failures are logged and yield None."""
        try:
            return self.paia_get(path)
        except PaiaProtocolError as error:
            logger.debug(f"Reading {what} failed: {error.code}:{error.error}")
        except PaiaTransportError as error:
            logger.warning(f"Reading {what} failed: {error}")
        return None

    def fetch_items(self, patron: Patron) -> List[ItemDocument]:
        """Fetch all item documents of the patron.

        Returns an empty list if the request fails or has no documents.
        """
        response = self._read(f"core/{patron.id}/items", "items")
        if not isinstance(response, dict) or not isinstance(response.get("doc"), list):
            logger.debug("No documents found in PAIA response. Returning empty list.")
            return []
        return [doc for doc in response["doc"] if isinstance(doc, dict)]

    def get_item_view(self, patron: Patron, view: ItemView) -> List[Any]:
        items = filter_by_status(
            self.fetch_items(patron), view_filter(view, self.hold_statuses)
        )
        return project_items(view, items, self.projection_options)

    def get_holds(self, patron: Patron) -> List[HoldRecord]:
        """Reserved, ordered and provided documents (see ``hold_statuses``)."""
        return self.get_item_view(patron, ItemView.HOLDS)

    def get_loans(self, patron: Patron) -> List[LoanRecord]:
        """Documents held by the patron."""
        return self.get_item_view(patron, ItemView.LOANS)

    def get_storage_requests(self, patron: Patron) -> List[StorageRequestRecord]:
        """Documents ordered from closed stacks."""
        return self.get_item_view(patron, ItemView.STORAGE_REQUESTS)

    def get_fees(self, patron: Patron) -> List[FeeRecord]:
        """Fees of the patron, amounts in minor units where parseable."""
        response = self._read(f"core/{patron.id}/fees", "fees")
        if not isinstance(response, dict) or not isinstance(response.get("fee"), list):
            return []
        return normalize_fees(
            [fee for fee in response["fee"] if isinstance(fee, dict)],
            resolve_id=self.projection_options.resolve_id,
            strategies=self.fee_type_strategies,
            record_loader=self.record_loader,
        )

    @staticmethod
    def get_profile(patron: Patron) -> Profile:
        return Profile(
            firstname=patron.firstname,
            lastname=patron.lastname,
            expires=patron.expires,
            statuscode=patron.status,
        )

    # Actions

    def _item_action(self, patron: Patron, action: str, items: Iterable[str]) -> Any:
        """POST ``{"doc": [{"item": ...}]}`` to ``core/{patron}/{action}``.

        Returns the decoded response, or an ActionResult describing a failure
        of the whole request.
        """
        payload = {"doc": [{"item": item} for item in items]}
        try:
            return self.paia_post(f"core/{patron.id}/{action}", payload)
        except PaiaProtocolError as error:
            logger.debug(f"{action} failed: {error.code}:{error.error}")
            return ActionResult.failed(
                status=error.error_description or error.error, sys_message=error.error
            )
        except PaiaTransportError as error:
            logger.warning(f"{action} failed: {error}")
            return ActionResult.failed(status=str(error), sys_message=str(error))

    @staticmethod
    def _response_docs(response: Any) -> List[Dict[str, Any]]:
        docs = response.get("doc") if isinstance(response, dict) else None
        if not isinstance(docs, list):
            return []
        malformed = [doc for doc in docs if not isinstance(doc, dict)]
        if malformed:
            logger.debug(f"Skipping malformed documents in PAIA response: {malformed!r}")
        return [doc for doc in docs if isinstance(doc, dict)]

    def cancel_holds(self, patron: Patron, items: Iterable[str]) -> ActionResult:
        """Cancel holds or storage requests, given their cancel details."""
        response = self._item_action(patron, "cancel", items)
        if isinstance(response, ActionResult):
            return response

        results: Dict[str, ItemResult] = {}
        for element in self._response_docs(response):
            item_id = element.get("item", "")
            if element.get("error"):
                results[item_id] = ItemResult(
                    success=False,
                    status=str(element["error"]),
                    sys_message="Cancel request rejected",
                )
            else:
                results[item_id] = ItemResult(
                    success=True, status="Success", sys_message="Successfully cancelled"
                )
        return ActionResult(
            items=results, count=sum(1 for result in results.values() if result.success)
        )

    def cancel_storage_requests(self, patron: Patron, items: Iterable[str]) -> ActionResult:
        return self.cancel_holds(patron, items)

    def renew_items(self, patron: Patron, items: Iterable[str]) -> ActionResult:
        """Renew loans, given their renew details.

        An item only counts as renewed if the server still reports it as held.
        """
        response = self._item_action(patron, "renew", items)
        if isinstance(response, ActionResult):
            return response

        results: Dict[str, ItemResult] = {}
        for element in self._response_docs(response):
            item_id = element.get("item", "")
            if "error" in element:
                results[item_id] = ItemResult(success=False, sys_message=str(element["error"]))
            elif status_equals(element.get("status"), PaiaStatus.HELD):
                results[item_id] = ItemResult(
                    success=True,
                    new_date=element.get("endtime") or "",
                    sys_message="Successfully renewed",
                )
            else:
                results[item_id] = ItemResult(
                    success=False,
                    new_date=element.get("endtime") or "",
                    sys_message="Request rejected",
                )
        return ActionResult(
            items=results,
            count=sum(1 for result in results.values() if result.success),
            blocks=False,
        )

    def request_items(self, patron: Patron, items: Iterable[str]) -> ActionResult:
        """Place holds or storage requests for items."""
        response = self._item_action(patron, "request", items)
        if isinstance(response, ActionResult):
            return response

        results: Dict[str, ItemResult] = {}
        for element in self._response_docs(response):
            item_id = element.get("item", "")
            if "error" in element:
                results[item_id] = ItemResult(success=False, sys_message=str(element["error"]))
            else:
                results[item_id] = ItemResult(success=True, sys_message="Successfully requested")
        return ActionResult(
            items=results, count=sum(1 for result in results.values() if result.success)
        )

    def place_hold(self, patron: Patron, item_id: str) -> ItemResult:
        """Place a hold on a single item."""
        result = self.request_items(patron, [item_id])
        if result.failure is not None:
            return ItemResult(success=False, sys_message=result.failure.status)
        if not result.items:
            return ItemResult(success=False, sys_message="No response for requested item")
        return result.items.get(item_id) or list(result.items.values())[-1]

    def place_storage_request(self, patron: Patron, item_id: str) -> ItemResult:
        """Storage retrieval requests are placed like holds in PAIA."""
        return self.place_hold(patron, item_id)

    @staticmethod
    def get_cancel_hold_details(record: Union[HoldRecord, StorageRequestRecord]) -> str:
        return record.cancel_details

    @staticmethod
    def get_renew_details(loan: LoanRecord) -> str:
        return loan.renew_details

    @staticmethod
    def check_storage_request_is_valid(patron: Patron) -> bool:
        """Only patrons in good standing with an unexpired account may order."""
        return (
            patron.status == PaiaStatus.NO_RELATION
            and bool(patron.expires)
            and str(patron.expires) > date.today().isoformat()
        )

    def get_hold_link(self, record_id: str, details: Mapping[str, Any]) -> Optional[str]:
        if self.hold_link_builder is None:
            return None
        return self.hold_link_builder(record_id, details)

    @staticmethod
    def get_default_pickup_location() -> None:
        return None

    @staticmethod
    def get_pickup_locations() -> List[Dict[str, Any]]:
        return []
