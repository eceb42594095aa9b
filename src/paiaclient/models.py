"""Patron and action result types returned by PaiaClient."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Patron:
    """A logged in patron.

    ``extra`` keeps every field of the PAIA patron response that has no
    attribute of its own.
    """

    id: str
    username: str
    firstname: str
    lastname: str
    email: str = ""
    status: int = 0
    expires: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_paia(cls, patron_id: str, username: str, response: Dict[str, Any]) -> "Patron":
        """Build a Patron from a ``core/{patron}`` response."""
        firstname, lastname = split_name(str(response.get("name", "")))
        try:
            status = int(response.get("status", 0))
        except (TypeError, ValueError):
            status = 0
        known = {"name", "email", "status", "expires"}
        return cls(
            id=patron_id,
            username=username,
            firstname=firstname,
            lastname=lastname,
            email=response.get("email") or "",
            status=status,
            expires=response.get("expires"),
            extra={k: v for k, v in response.items() if k not in known},
        )


def split_name(name: str) -> tuple[str, str]:
    """Split a PAIA patron name into (firstname, lastname).

    ``"Doe, Jane"`` is read as last name first; otherwise the first word is
    the first name and the remaining words the last name.
    """
    name = name.strip()
    parts = name.split(",")
    if len(parts) == 2:
        return parts[1].strip(), parts[0].strip()
    words = name.split()
    if not words:
        return "", ""
    return words[0], " ".join(words[1:])


@dataclass(frozen=True)
class Profile:
    firstname: str
    lastname: str
    expires: Optional[str]
    statuscode: int
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    zip: Optional[str] = None
    phone: Optional[str] = None
    group: Optional[str] = None


@dataclass(frozen=True)
class ItemResult:
    """Outcome of an action (cancel, renew, request) for one item."""

    success: bool
    status: str = ""
    sys_message: str = ""
    new_date: str = ""


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a bulk action.

    Attributes:
        items (Dict[str, ItemResult]): Per-item results keyed by item id.
        failure (ItemResult | None): Set when the whole request failed; in that
            case ``items`` is empty.
        count (int): Number of successful items.
        blocks (bool): Whether the account blocks the action (renew only).
    """

    items: Dict[str, ItemResult] = field(default_factory=dict)
    failure: Optional[ItemResult] = None
    count: int = 0
    blocks: bool = False

    @property
    def success(self) -> bool:
        return self.failure is None and all(item.success for item in self.items.values())

    @classmethod
    def failed(cls, status: str, sys_message: str = "") -> "ActionResult":
        return cls(failure=ItemResult(success=False, status=status, sys_message=sys_message))
