"""Turns one raw source line into a record, a header, or a skip reason."""

import csv
import json
import re
from dataclasses import dataclass
from typing import Any

from phoneindex.indexer.exceptions import PhoneColumnNotFoundError
from phoneindex.indexer.models import LineResult, SkipReason
from phoneindex.phone.normalizer import format_phone, try_normalize_phone

DELIMITER_ALIASES: dict[str, str] = {
    "pipe": "|",
    "|": "|",
    "tab": "\t",
    "\t": "\t",
    "\\t": "\t",
    "comma": ",",
    ",": ",",
}
_DETECTION_ORDER = ("|", "\t", ",")

# Phone positions of the wide tab-separated extract, most likely first.
EXTRACT_PHONE_POSITIONS = (24, 25, 23, 26, 22, 27)
_WIDE_EXTRACT_MIN_FIELDS = 23

# A field that may hold a phone: digits plus optional '+', spaces, parens, dashes.
_PHONE_LIKE = re.compile(r"^\+?[\d\s()\-]+$")
_NON_DIGITS = re.compile(r"\D")


def resolve_delimiter(selector: str | None) -> str | None:
    """Map a delimiter selector to the character; None means detect."""
    if selector is None:
        return None
    if selector in DELIMITER_ALIASES:
        return DELIMITER_ALIASES[selector]
    key = selector.strip().lower()
    if key in ("", "auto"):
        return None
    delimiter = DELIMITER_ALIASES.get(key)
    if delimiter is None:
        raise ValueError(
            f"Unsupported delimiter '{selector}'. Choose from: auto, pipe, tab, comma"
        )
    return delimiter


def detect_delimiter(line: str) -> str:
    """Most frequent of pipe, tab, comma; ties resolve in that order, tab if none."""
    best, best_count = "\t", 0
    for candidate in _DETECTION_ORDER:
        count = line.count(candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def unwrap_envelope(line: str) -> str:
    """Return the inner value of a ``{"_0": "..."}`` line, else the line itself."""
    stripped = line.strip()
    if not (stripped.startswith("{") and stripped.endswith("}") and '"_0"' in stripped):
        return line
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError:
        return line
    if not isinstance(payload, dict) or "_0" not in payload:
        return line
    value = payload["_0"]
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def split_fields(line: str, delimiter: str) -> list[str]:
    if delimiter == ",":
        return next(csv.reader([line]), [])
    return line.split(delimiter)


@dataclass(frozen=True)
class PhoneLocator:
    """Where the phone lives: a fixed index, a header column name, or scan."""

    index: int | None = None
    name: str | None = None

    @classmethod
    def parse(cls, value: str | None) -> "PhoneLocator":
        text = (value or "").strip()
        if not text or text.lower() == "auto":
            return cls()
        if text.isdigit():
            return cls(index=int(text))
        return cls(name=text)

    @property
    def uses_header(self) -> bool:
        return self.name is not None


class LineParser:
    """Stateful per-run parser; binds the header row on the first content line."""

    def __init__(
        self,
        codec: str,
        locator: PhoneLocator,
        delimiter: str | None = None,
        min_fields: int = 2,
    ) -> None:
        self._codec = codec
        self._locator = locator
        self._delimiter = delimiter
        self._min_fields = max(1, min_fields)
        self._header: list[str] | None = None
        self._phone_index = locator.index

    @property
    def delimiter(self) -> str | None:
        return self._delimiter

    @property
    def header(self) -> list[str] | None:
        return self._header

    def inspect(self, first_line: bytes) -> None:
        """Detect the delimiter and validate the header from a sample line.

        Raises:
            PhoneColumnNotFoundError: if a named phone column is absent.
        """
        try:
            text = unwrap_envelope(first_line.decode(self._codec))
        except UnicodeDecodeError:
            return
        if not text.strip():
            return
        if self._delimiter is None:
            self._delimiter = detect_delimiter(text)
        if self._locator.uses_header:
            self._column_index(self._split(text))

    def parse(self, raw: bytes) -> LineResult:
        try:
            text = raw.decode(self._codec)
        except UnicodeDecodeError:
            return LineResult.skipped(SkipReason.DECODE_ERROR)
        line = unwrap_envelope(text)
        if not line.strip():
            return LineResult.skipped(SkipReason.EMPTY_LINE)
        if self._delimiter is None:
            self._delimiter = detect_delimiter(line)
        fields = self._split(line)

        if self._locator.uses_header and self._header is None:
            self._phone_index = self._column_index(fields)
            self._header = fields
            return LineResult.header()

        if len(fields) < self._required_fields():
            return LineResult.skipped(SkipReason.TOO_FEW_FIELDS)
        phone = self._extract_phone(fields)
        if phone is None:
            return LineResult.skipped(SkipReason.INVALID_PHONE)
        return LineResult(record=self._build_record(fields, phone))

    def _split(self, line: str) -> list[str]:
        delimiter = self._delimiter or "\t"
        return [field.strip() for field in split_fields(line, delimiter)]

    def _column_index(self, header: list[str]) -> int:
        wanted = (self._locator.name or "").lower()
        for index, name in enumerate(header):
            if name.lower() == wanted:
                return index
        raise PhoneColumnNotFoundError(
            f"Phone column '{self._locator.name}' not found in header: {header}"
        )

    def _required_fields(self) -> int:
        if self._phone_index is None:
            return self._min_fields
        return max(self._min_fields, self._phone_index + 1)

    def _extract_phone(self, fields: list[str]) -> str | None:
        if self._phone_index is not None:
            return try_normalize_phone(fields[self._phone_index])
        if len(fields) < _WIDE_EXTRACT_MIN_FIELDS:
            return _scan_narrow(fields)
        for position in EXTRACT_PHONE_POSITIONS:
            if position < len(fields) and any(ch.isdigit() for ch in fields[position]):
                phone = try_normalize_phone(fields[position])
                if phone is not None:
                    return phone
        return None

    def _build_record(self, fields: list[str], phone: str) -> dict[str, Any]:
        record: dict[str, Any]
        if self._header is not None:
            record = {
                name: value
                for name, value in zip(self._header, fields)
                if name and value
            }
        elif len(fields) >= _WIDE_EXTRACT_MIN_FIELDS:
            record = _extract_layout(fields)
        else:
            record = {"fields": fields}
        record["phone"] = phone
        record["formattedPhone"] = format_phone(phone)
        return record


def _scan_narrow(fields: list[str]) -> str | None:
    """Pick the phone of a short positional line.

    Only phone-like fields are considered. A value written with its country
    code (leading '+', or 11 digits starting with 7 or 8) beats a bare
    10-digit value, so an INN or id column in front of the phone is not
    mistaken for it.
    """
    candidates = [value for value in fields if _PHONE_LIKE.match(value)]
    for value in candidates:
        digits = _NON_DIGITS.sub("", value)
        if value.startswith("+") or (len(digits) == 11 and digits[0] in "78"):
            phone = try_normalize_phone(value)
            if phone is not None:
                return phone
    for value in candidates:
        phone = try_normalize_phone(value)
        if phone is not None:
            return phone
    return None


def _extract_layout(fields: list[str]) -> dict[str, Any]:
    """Named attributes of the wide positional extract."""

    def get(index: int) -> str:
        return fields[index] if index < len(fields) else ""

    return {
        "id": get(0),
        "fullName": " ".join(part for part in (get(5), get(6), get(7)) if part),
        "lastName": get(5),
        "firstName": get(6),
        "middleName": get(7),
        "gender": get(8),
        "birthDate": get(17),
        "birthPlace": get(18),
        "passportData": " ".join(part for part in (get(9), get(11), get(12), get(13)) if part),
        "inn": get(22),
        "address": get(27),
    }
