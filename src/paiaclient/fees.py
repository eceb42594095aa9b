"""Normalization of PAIA fee documents."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from paiaclient.items import AlternativeIdResolver, identity
from paiaclient.money import parse_money

FeeDocument = Dict[str, Any]


class RecordLoader(Protocol):
    """Loads a catalog record by its id."""

    def load(self, record_id: str) -> Any: ...  # pragma: no cover


@dataclass(frozen=True)
class FeeRecord:
    amount: Union[int, str]
    balance: Union[int, str]
    checkout: str
    fine: Optional[str]
    createdate: Optional[str]
    duedate: str
    id: str
    about: Optional[str]
    feetypeid: Optional[str]
    driver: Any
    title: Optional[str] = None


FeeTypeStrategy = Callable[[FeeRecord], FeeRecord]


def about_as_title(fee: FeeRecord) -> FeeRecord:
    """The about text is the title of the item that caused the fee."""
    return replace(fee, title=fee.about)


def about_with_due_date(fee: FeeRecord) -> FeeRecord:
    """The about text reads ``"<title> [<original due date>]"``.

    Used for overdue fees, where the fee date is the return date and the
    original due date travels in brackets.
    """
    about = fee.about or ""
    title, bracket, rest = about.partition("[")
    if not bracket:
        return replace(fee, title=about)
    return replace(fee, title=title.strip(), duedate=rest.split("]", 1)[0].strip())


TUBFIND_FEE_TYPE_STRATEGIES: Dict[str, FeeTypeStrategy] = {
    "http://paia.gbv.de/tubfind:fee-type:2": about_as_title,
    "http://paia.gbv.de/tubfind:fee-type:8": about_with_due_date,
}


def record_id_from_edition(edition: str) -> Optional[str]:
    """Catalog id of an edition URI such as ``http://uri.gbv.de/document/opac-de-830:ppn:123``.

    The id is the last ``:`` separated segment without its leading type
    character. URIs without a ``:`` have no record id.
    """
    parts = edition.split(":")
    if len(parts) < 2 or not parts[-1]:
        return None
    return parts[-1][1:]


def normalize_fee(
    fee: Mapping[str, Any],
    resolve_id: AlternativeIdResolver = identity,
    strategies: Optional[Mapping[str, FeeTypeStrategy]] = None,
    record_loader: Optional[RecordLoader] = None,
) -> FeeRecord:
    edition = fee.get("edition")
    driver = None
    if edition and record_loader is not None:
        record_id = record_id_from_edition(edition)
        driver = record_loader.load(record_id) if record_id else None

    record = FeeRecord(
        amount=parse_money(fee.get("amount", "")),
        balance=parse_money(fee.get("amount", "")),
        checkout="",
        fine=fee.get("feetype"),
        createdate=fee.get("date"),
        duedate="",
        id=resolve_id(edition) if edition else "",
        about=fee.get("about"),
        feetypeid=fee.get("feetypeid"),
        driver=driver,
    )

    strategy = (strategies or {}).get(fee.get("feetypeid") or "")
    return strategy(record) if strategy else record


def normalize_fees(
    fees: Iterable[Mapping[str, Any]],
    resolve_id: AlternativeIdResolver = identity,
    strategies: Optional[Mapping[str, FeeTypeStrategy]] = None,
    record_loader: Optional[RecordLoader] = None,
) -> List[FeeRecord]:
    return [normalize_fee(fee, resolve_id, strategies, record_loader) for fee in fees]
