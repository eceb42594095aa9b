from unittest.mock import Mock

from paiaclient.fees import (
    TUBFIND_FEE_TYPE_STRATEGIES,
    FeeRecord,
    about_as_title,
    about_with_due_date,
    normalize_fee,
    normalize_fees,
    record_id_from_edition,
)


def fee_record(about):
    return FeeRecord(
        amount=100, balance=100, checkout="", fine=None, createdate=None, duedate="",
        id="", about=about, feetypeid=None, driver=None,
    )


def test_normalize_fee():
    fee = normalize_fee({
        "amount": "3.00 EUR",
        "feetype": "overdue",
        "date": "2024-05-01",
        "about": "Moby Dick",
        "edition": "urn:ppn:123",
        "feetypeid": "urn:fee:1",
    })
    assert fee.amount == 300
    assert fee.balance == 300
    assert fee.checkout == ""
    assert fee.fine == "overdue"
    assert fee.createdate == "2024-05-01"
    assert fee.duedate == ""
    assert fee.id == "urn:ppn:123"
    assert fee.about == "Moby Dick"
    assert fee.feetypeid == "urn:fee:1"
    assert fee.driver is None
    assert fee.title is None


def test_unparseable_amount_is_kept():
    fee = normalize_fee({"amount": "three euros"})
    assert fee.amount == "three euros"
    assert fee.id == ""


def test_resolve_id():
    fee = normalize_fee({"edition": "urn:ppn:123"}, resolve_id=lambda edition: "rec")
    assert fee.id == "rec"


def test_about_as_title():
    assert about_as_title(fee_record("Moby Dick")).title == "Moby Dick"


def test_about_with_due_date():
    fee = about_with_due_date(fee_record("  Moby Dick  [ 2024-01-31 ]"))
    assert fee.title == "Moby Dick"
    assert fee.duedate == "2024-01-31"


def test_about_without_bracket():
    fee = about_with_due_date(fee_record("Moby Dick"))
    assert fee.title == "Moby Dick"
    assert fee.duedate == ""


def test_strategies_by_fee_type():
    fees = normalize_fees(
        [
            {"amount": "1.00 EUR", "about": "A [2024-02-01]",
             "feetypeid": "http://paia.gbv.de/tubfind:fee-type:8"},
            {"amount": "2.00 EUR", "about": "B",
             "feetypeid": "http://paia.gbv.de/tubfind:fee-type:2"},
            {"amount": "3.00 EUR", "about": "C", "feetypeid": "http://paia.gbv.de/other"},
        ],
        strategies=TUBFIND_FEE_TYPE_STRATEGIES,
    )
    assert [(fee.title, fee.duedate) for fee in fees] == [
        ("A", "2024-02-01"), ("B", ""), (None, "")
    ]


def test_record_id_from_edition():
    assert record_id_from_edition("http://uri.gbv.de/document/opac-de-830:ppn:123456") == "23456"
    assert record_id_from_edition("no-colon") is None
    assert record_id_from_edition("trailing:") is None


def test_record_loader():
    loader = Mock()
    loader.load.return_value = "driver"

    fee = normalize_fee({"edition": "urn:ppn:X123"}, record_loader=loader)

    loader.load.assert_called_once_with("123")
    assert fee.driver == "driver"


def test_record_loader_without_edition():
    loader = Mock()
    fee = normalize_fee({"amount": "1.00 EUR"}, record_loader=loader)
    loader.load.assert_not_called()
    assert fee.driver is None
