"""Case-insensitive header lookup that keeps presence distinct from emptiness."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from email.errors import HeaderParseError
from email.header import decode_header, make_header


class HeaderLookup(Mapping[str, str]):
    """Read-only view over message headers.

    Names compare case-insensitively. A header that was sent with an empty
    value is present and maps to ``""``; a header that was never sent is
    absent and :meth:`get` returns ``None``. When a header repeats, the first
    occurrence wins, matching :meth:`email.message.Message.get`.
    """

    __slots__ = ("_values", "_names")

    def __init__(self, items: Iterable[tuple[str, str | None]] = ()) -> None:
        self._values: dict[str, str] = {}
        self._names: dict[str, str] = {}
        for name, value in items:
            key = _fold(name)
            if not key or key in self._values:
                continue
            self._values[key] = _decode(value)
            self._names[key] = name.strip()

    @classmethod
    def from_mapping(cls, headers: Mapping[str, str | None]) -> HeaderLookup:
        return cls(headers.items())

    def present(self, name: str) -> bool:
        """Return True when ``name`` was sent, whatever its value."""

        return _fold(name) in self._values

    def __getitem__(self, name: str) -> str:
        return self._values[_fold(name)]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.present(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"HeaderLookup({dict(zip(self._names.values(), self._values.values()))!r})"


def _fold(name: str) -> str:
    return name.strip().lower()


def _decode(value: str | None) -> str:
    if value is None:
        return ""
    text = repair_raw_text(str(value))
    # Unfold continuation lines before decoding encoded words.
    text = " ".join(part.strip() for part in text.splitlines())
    if "=?" not in text:
        return text.strip()
    try:
        decoded = str(make_header(decode_header(text)))
    except (HeaderParseError, LookupError, UnicodeError, ValueError):
        decoded = text
    return decoded.strip()


def repair_raw_text(text: str) -> str:
    """Replace surrogate escapes left by the parser for raw 8-bit header bytes.

    The bytes are read as UTF-8 when they form valid UTF-8 and as Latin-1
    otherwise, so the result can always be encoded again.
    """

    try:
        raw = text.encode("utf-8", errors="surrogateescape")
    except UnicodeEncodeError:
        return text.encode("utf-8", errors="replace").decode("utf-8")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


__all__ = ["HeaderLookup", "repair_raw_text"]
