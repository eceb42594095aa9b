"""Normalization of PAIA item documents into holds, loans and storage requests.

PAIA core returns a single list of documents for a patron, each with a status
code (see :class:`paiaclient.status.PaiaStatus`). The views below select
documents by status and project them into fixed-shape records. Missing
optional fields never make a projection fail; they take the record default.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from paiaclient.status import PaiaStatus, status_equals, status_label

ItemDocument = Dict[str, Any]
AlternativeIdResolver = Callable[[str], str]


def identity(raw_id: str) -> str:
    return raw_id


def _comparable(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value)


def filter_by_status(
    items: Iterable[ItemDocument], filters: Mapping[str, Iterable[Any]]
) -> List[ItemDocument]:
    """Keep the documents matching every filter field.

    A document matches a field if it has the field and its value is one of the
    allowed values. Values are compared by their string form, so ``"3"`` and
    ``3`` are the same status. An empty filter keeps every document.

    >>> filter_by_status([{"status": "1"}, {"status": 3}], {"status": [1, 4]})
    [{'status': '1'}]
    """
    allowed = {key: {_comparable(value) for value in values} for key, values in filters.items()}
    return [
        doc
        for doc in items
        if all(
            key in doc and doc[key] is not None and _comparable(doc[key]) in values
            for key, values in allowed.items()
        )
    ]


@dataclass(frozen=True)
class ProjectionOptions:
    """Deployment choices applied while projecting documents.

    Attributes:
        resolve_id (Callable[[str], str]): Maps an edition URI to the catalog
            record id. Defaults to identity.
        renewable_default (bool): ``renewable`` of a loan without ``canrenew``.
    """

    resolve_id: AlternativeIdResolver = identity
    renewable_default: bool = False


@dataclass(frozen=True)
class HoldRecord:
    item_id: str
    id: str
    type: str
    location: Optional[str]
    position: Optional[Any]
    available: bool
    title: Optional[str]
    callnumber: Optional[str]
    create: str
    duedate: str
    expire: str
    cancel_details: str


@dataclass(frozen=True)
class LoanRecord:
    item_id: str
    id: str
    title: Optional[str]
    renewable: bool
    renew_details: str
    request: Optional[Any]
    renew: Optional[int]
    due_time: str
    duedate: str
    message: str
    institution_name: str
    callnumber: Optional[str]


@dataclass(frozen=True)
class StorageRequestRecord:
    item_id: str
    id: str
    type: str
    location: Optional[str]
    position: Optional[Any]
    title: Optional[str]
    callnumber: Optional[str]
    create: str
    cancel_details: str


def _edition_id(doc: ItemDocument, options: ProjectionOptions) -> str:
    edition = doc.get("edition")
    return options.resolve_id(edition) if edition else ""


def project_hold(doc: ItemDocument, options: ProjectionOptions) -> HoldRecord:
    item_id = doc.get("item") or ""
    status = doc.get("status")
    create = duedate = expire = ""
    if status_equals(status, PaiaStatus.RESERVED) or status_equals(status, PaiaStatus.ORDERED):
        # starttime: when the document was reserved or ordered
        create = doc.get("starttime") or ""
        duedate = doc.get("endtime") or ""
    available = status_equals(status, PaiaStatus.PROVIDED)
    if available:
        # endtime: when the provision expires
        expire = doc.get("endtime") or ""

    return HoldRecord(
        item_id=item_id,
        id=_edition_id(doc, options),
        type=status_label(status),
        location=doc.get("location"),
        position=doc.get("queue"),
        available=available,
        title=doc.get("about"),
        callnumber=doc.get("label"),
        create=create,
        duedate=duedate,
        expire=expire,
        cancel_details=item_id if doc.get("cancancel") else "",
    )


def project_loan(doc: ItemDocument, options: ProjectionOptions) -> LoanRecord:
    item_id = doc.get("item") or ""
    canrenew = doc.get("canrenew")
    renewable = bool(canrenew) if canrenew is not None else options.renewable_default

    return LoanRecord(
        item_id=item_id,
        id=_edition_id(doc, options),
        title=doc.get("about"),
        renewable=renewable,
        renew_details=item_id if renewable else "",
        request=doc.get("queue"),
        renew=doc.get("renewals"),
        due_time=doc.get("endtime") or "",
        # deprecated in PAIA, still sent by some servers
        duedate=doc.get("duedate") or "",
        message=doc.get("error") or "",
        institution_name=doc.get("storage") or "",
        callnumber=doc.get("label"),
    )


def project_storage_request(
    doc: ItemDocument, options: ProjectionOptions
) -> StorageRequestRecord:
    item_id = doc.get("item") or ""
    return StorageRequestRecord(
        item_id=item_id,
        id=_edition_id(doc, options),
        type=status_label(doc.get("status")),
        location=doc.get("location"),
        position=doc.get("queue"),
        title=doc.get("about"),
        callnumber=doc.get("label"),
        create=doc.get("starttime") or "",
        cancel_details=item_id if doc.get("cancancel") else "",
    )


class ItemView(Enum):
    HOLDS = "holds"
    LOANS = "loans"
    STORAGE_REQUESTS = "storage_requests"


_PROJECTIONS: Dict[ItemView, Callable[[ItemDocument, ProjectionOptions], Any]] = {
    ItemView.HOLDS: project_hold,
    ItemView.LOANS: project_loan,
    ItemView.STORAGE_REQUESTS: project_storage_request,
}


def view_filter(view: ItemView, hold_statuses: Iterable[int]) -> Dict[str, List[int]]:
    """Status filter selecting the documents of a view."""
    if view is ItemView.HOLDS:
        return {"status": list(hold_statuses)}
    if view is ItemView.LOANS:
        return {"status": [PaiaStatus.HELD]}
    return {"status": [PaiaStatus.ORDERED]}


def project_items(
    view: ItemView, items: Iterable[ItemDocument], options: ProjectionOptions
) -> List[Any]:
    """Project pre-filtered documents into the records of ``view``."""
    projection = _PROJECTIONS[view]
    return [projection(doc, options) for doc in items]
