from __future__ import annotations

from verity.recipients import envelope_recipients, parse_addresses, resolve
from verity.types import Edition, Message


class DictFinder:
    def __init__(self, *editions: Edition) -> None:
        self.editions = {edition.fact_check_email_address: edition for edition in editions}
        self.lookups: list[str] = []

    def find_by_fact_check_address(self, address: str) -> Edition | None:
        self.lookups.append(address)
        return self.editions.get(address)


def test_parse_addresses_strips_display_names_and_skips_garbage():
    parsed = parse_addresses(
        [
            '"Fact Checker" <factcheck+1@example.com>, other@example.com',
            None,
            "undisclosed-recipients:;",
        ]
    )

    assert parsed == frozenset({"factcheck+1@example.com", "other@example.com"})


def test_envelope_recipients_orders_to_cc_bcc():
    message = Message(
        to={"b@example.com", "a@example.com"},
        cc={"c@example.com", "a@example.com"},
        bcc={"d@example.com"},
    )

    assert envelope_recipients(message) == [
        "a@example.com",
        "b@example.com",
        "c@example.com",
        "d@example.com",
    ]


def test_resolve_matches_bcc_recipient():
    edition = Edition("guide-1", "factcheck+1@example.com")
    message = Message(to={"editor@example.com"}, bcc={"factcheck+1@example.com"})

    assert resolve(message, DictFinder(edition)) is edition


def test_resolve_returns_none_for_unknown_addresses():
    finder = DictFinder(Edition("guide-1", "factcheck+1@example.com"))
    message = Message(to={"factcheck+2@example.com"})

    assert resolve(message, finder) is None
    assert finder.lookups == ["factcheck+2@example.com"]


def test_resolve_requires_exact_address():
    finder = DictFinder(Edition("guide-1", "factcheck+1@example.com"))
    message = Message(to={"FactCheck+1@example.com"})

    assert resolve(message, finder) is None


def test_resolve_without_recipients():
    assert resolve(Message(), DictFinder()) is None
