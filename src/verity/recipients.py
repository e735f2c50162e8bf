"""Map a message's envelope recipients to the edition awaiting its reply."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from email.utils import getaddresses
from typing import Protocol

from .types import Edition, Message


class EditionFinder(Protocol):
    def find_by_fact_check_address(self, address: str) -> Edition | None:
        ...


def envelope_recipients(message: Message) -> list[str]:
    """Return To, Cc and Bcc addresses in that order without duplicates."""

    seen: set[str] = set()
    ordered: list[str] = []
    for group in (message.to, message.cc, message.bcc):
        for address in sorted(group):
            if address in seen:
                continue
            seen.add(address)
            ordered.append(address)
    return ordered


def resolve(message: Message, editions: EditionFinder) -> Edition | None:
    """Return the edition whose fact-check address received ``message``.

    Addresses must match exactly; a message for an unknown mailbox resolves
    to ``None``.
    """

    for address in envelope_recipients(message):
        edition = editions.find_by_fact_check_address(address)
        if edition is not None:
            return edition
    return None


def parse_addresses(values: Iterable[str | None]) -> frozenset[str]:
    """Extract bare addresses from raw address header values.

    Display names and malformed entries are dropped; ``None`` values are
    treated as absent headers.
    """

    return frozenset(_iter_addresses(value for value in values if value))


def _iter_addresses(values: Iterable[str]) -> Iterator[str]:
    for _display, address in getaddresses([str(value) for value in values]):
        candidate = address.strip()
        if candidate and "@" in candidate:
            yield candidate


__all__ = ["EditionFinder", "envelope_recipients", "parse_addresses", "resolve"]
