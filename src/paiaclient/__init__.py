"""PaiaClient is a Python client for PAIA patron account services.

It logs patrons in, keeps their bearer-token session alive, and turns the
PAIA item and fee documents into normalized holds, loans, storage requests
and fees for a catalog front end.
"""

import importlib.metadata

from paiaclient.exceptions import (
    # Base exceptions
    PaiaError,
    PaiaClientClosed,
    PaiaInvalidCredentialsError,
    # Protocol errors
    PaiaProtocolError,
    PaiaAuthenticationFailedError,
    PaiaTokenExpiredError,
    PaiaMissingPatronError,
    PaiaPermissionError,
    PaiaNotFoundError,
    PaiaServerError,
    # Transport errors
    PaiaTransportError,
    PaiaSystemUnavailableError,
    PaiaTimeoutError,
    PaiaRemoteProtocolError,
    PaiaNetworkError,
)
from paiaclient.PaiaClient import PaiaClient
from paiaclient._httpx import PaiaAuth, PaiaConnectionParameters
from paiaclient.fees import (
    FeeRecord,
    TUBFIND_FEE_TYPE_STRATEGIES,
    about_as_title,
    about_with_due_date,
)
from paiaclient.items import (
    HoldRecord,
    ItemView,
    LoanRecord,
    StorageRequestRecord,
    filter_by_status,
)
from paiaclient.models import ActionResult, ItemResult, Patron, Profile
from paiaclient.money import parse_money
from paiaclient.pica import PicaHoldLinkBuilder, PicaPpnResolver, pica_check_digit
from paiaclient.session import AuthSession, InMemorySessionStore, Session, SessionState
from paiaclient.status import PaiaStatus, status_label

__version__ = importlib.metadata.version("paiaclient")
__all__ = [
    # Core client
    "PaiaClient",
    # PAIA Auth Components
    "PaiaAuth",
    "PaiaConnectionParameters",
    "AuthSession",
    "InMemorySessionStore",
    "Session",
    "SessionState",
    # Records
    "Patron",
    "Profile",
    "HoldRecord",
    "LoanRecord",
    "StorageRequestRecord",
    "FeeRecord",
    "ItemResult",
    "ActionResult",
    "ItemView",
    "PaiaStatus",
    # Normalization helpers
    "filter_by_status",
    "parse_money",
    "status_label",
    "about_as_title",
    "about_with_due_date",
    "TUBFIND_FEE_TYPE_STRATEGIES",
    # PICA deployments
    "PicaHoldLinkBuilder",
    "PicaPpnResolver",
    "pica_check_digit",
    # Base exceptions
    "PaiaError",
    "PaiaClientClosed",
    "PaiaInvalidCredentialsError",
    # Protocol errors
    "PaiaProtocolError",
    "PaiaAuthenticationFailedError",
    "PaiaTokenExpiredError",
    "PaiaMissingPatronError",
    "PaiaPermissionError",
    "PaiaNotFoundError",
    "PaiaServerError",
    # Transport errors
    "PaiaTransportError",
    "PaiaSystemUnavailableError",
    "PaiaTimeoutError",
    "PaiaRemoteProtocolError",
    "PaiaNetworkError",
]
